# src/gtm_command/tests/conftest.py
"""Shared fixtures for GTM Command Center tests."""
import pytest

from gtm_command.data_client import DataClient, QueryResult
from gtm_command.throttle import (
    ActionPolicy,
    MemoryLogStorage,
    PolicyTable,
    RequestGovernor,
    ThrottleLogSink,
)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingTransport:
    """Transport that records every request and replays queued results."""

    def __init__(self, results=None):
        self.requests = []
        self.results = list(results or [])

    def __call__(self, request):
        self.requests.append(request)
        if self.results:
            return self.results.pop(0)
        return QueryResult(data=[])


@pytest.fixture
def clock():
    """Fake clock starting at t=0."""
    return FakeClock()


@pytest.fixture
def sink():
    """In-memory throttle log sink."""
    return ThrottleLogSink(storage=MemoryLogStorage())


@pytest.fixture
def governor(clock, sink):
    """Governor with the application policies and a fake clock."""
    return RequestGovernor(sink=sink, clock=clock)


@pytest.fixture
def small_governor(clock, sink):
    """Governor with tiny policies that are easy to exhaust."""
    policies = PolicyTable({
        "test:cooldown": ActionPolicy(capacity=2, window_ms=1000, cooldown_ms=500),
        "test:window": ActionPolicy(capacity=2, window_ms=1000),
    })
    return RequestGovernor(policies=policies, sink=sink, clock=clock)


@pytest.fixture
def transport():
    """Recording transport with no queued results."""
    return RecordingTransport()


@pytest.fixture
def data_client(transport):
    """Data client over the recording transport."""
    return DataClient(transport)
