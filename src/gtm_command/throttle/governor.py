# throttle/governor.py
"""Client-side request governor.

Implements per-action sliding-window limiting with optional cooldown
penalties. Every guarded action asks ``check_and_consume`` for a decision
before it runs; the decision is synchronous and never raises.

Usage:
    governor = RequestGovernor()

    decision = governor.check_and_consume("gemini:deep-strategy")
    if not decision.allowed:
        show_wait_banner(decision.retry_after_ms)

    # Or turn rejections into exceptions
    generate = governor.wrap_guarded(client.generate_content, "gemini:parse-lead")
    try:
        result = await generate(prompt)
    except Exception as e:
        if is_throttle_rejection(e):
            ...
"""

import functools
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from ..config import config as default_config
from ..logging_utils import get_logger
from .models import Decision, RejectionReason, retry_seconds
from .policies import ActionPolicy, PolicyTable, default_policy_table
from .sink import JsonFileLogStorage, MemoryLogStorage, ThrottleLogSink

T = TypeVar("T")

Clock = Callable[[], int]


def monotonic_ms() -> int:
    """Monotonic clock in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


class GuardedCallError(Exception):
    """Raised when a guarded call is rejected by the governor.

    Attributes:
        retry_after_ms: Milliseconds until a retry can succeed.
        action_id: The rejected action identifier.
        reason: Why the attempt was rejected.
    """

    is_throttle_rejection = True

    def __init__(
        self,
        message: str,
        retry_after_ms: float,
        action_id: str,
        reason: Optional[RejectionReason] = None,
    ):
        super().__init__(message)
        self.message = message
        self.retry_after_ms = retry_after_ms
        self.action_id = action_id
        self.reason = reason

    @classmethod
    def from_decision(cls, action_id: str, decision: Decision) -> "GuardedCallError":
        return cls(
            decision.message,
            decision.retry_after_ms,
            action_id,
            decision.reason,
        )

    @property
    def retry_after_seconds(self) -> int:
        return retry_seconds(self.retry_after_ms)


def is_throttle_rejection(error: object) -> bool:
    """Tell governor rejections apart from every other failure kind."""
    if isinstance(error, GuardedCallError):
        return True
    return error is not None and getattr(error, "is_throttle_rejection", False) is True


@dataclass
class ActionState:
    """Mutable window state for one action identifier."""

    admitted_timestamps: List[int] = field(default_factory=list)
    cooldown_until: int = 0


def _cooldown_message(retry_after_ms: float) -> str:
    return (
        f"Rate limit cooldown active. Please wait {retry_seconds(retry_after_ms)} "
        "seconds before trying again."
    )


def _limit_message(retry_after_ms: float) -> str:
    return (
        f"Rate limit exceeded for this action. Please wait {retry_seconds(retry_after_ms)} "
        "seconds before trying again."
    )


UNRESTRICTED = Decision(allowed=True, remaining=math.inf, retry_after_ms=0)


class RequestGovernor:
    """Per-action sliding-window limiter with cooldown penalties.

    Each instance owns its own state mapping, so tests and independent
    sessions can use isolated governors. State is created lazily on the first
    check of a restricted action and lives as long as the instance.

    Attributes:
        policies: The ``PolicyTable`` consulted for every check.
        sink: The ``ThrottleLogSink`` receiving rejection events.
    """

    def __init__(
        self,
        policies: Optional[PolicyTable] = None,
        sink: Optional[ThrottleLogSink] = None,
        clock: Optional[Clock] = None,
    ):
        """Initialize the governor.

        Args:
            policies: Policy table. Defaults to the application policies.
            sink: Instrumentation sink. Defaults to an in-memory sink.
            clock: Zero-argument callable returning milliseconds.
        """
        self.logger = get_logger(__name__)
        self.policies = policies if policies is not None else default_policy_table()
        self.sink = sink if sink is not None else ThrottleLogSink()
        self._clock = clock or monotonic_ms

        self._states: Dict[str, ActionState] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, action_id: str) -> Decision:
        """Decide whether an attempt is admitted, recording it if so.

        Args:
            action_id: Action identifier of the guarded operation.

        Returns:
            Decision for this attempt. Never raises.
        """
        policy = self.policies.get(action_id)
        if policy is None:
            return UNRESTRICTED

        with self._lock:
            now = self._clock()
            state = self._states.get(action_id)
            if state is None:
                state = ActionState()
                self._states[action_id] = state

            if state.cooldown_until > now:
                retry_after_ms = state.cooldown_until - now
                decision = Decision(
                    allowed=False,
                    remaining=0,
                    retry_after_ms=retry_after_ms,
                    message=_cooldown_message(retry_after_ms),
                    reason=RejectionReason.COOLDOWN,
                )
            else:
                window_start = now - policy.window_ms
                state.admitted_timestamps = [
                    ts for ts in state.admitted_timestamps if ts > window_start
                ]

                if len(state.admitted_timestamps) >= policy.capacity:
                    if policy.has_cooldown:
                        state.cooldown_until = now + policy.cooldown_ms
                    retry_after_ms = self._limit_retry_after(
                        policy, state.admitted_timestamps, now
                    )
                    decision = Decision(
                        allowed=False,
                        remaining=0,
                        retry_after_ms=retry_after_ms,
                        message=_limit_message(retry_after_ms),
                        reason=RejectionReason.LIMIT_REACHED,
                    )
                else:
                    state.admitted_timestamps.append(now)
                    return Decision(
                        allowed=True,
                        remaining=policy.capacity - len(state.admitted_timestamps),
                        retry_after_ms=0,
                    )

        self.sink.record(action_id, decision.reason, decision.retry_after_ms)
        return decision

    def peek_status(self, action_id: str) -> Decision:
        """Report what ``check_and_consume`` would decide, without side effects.

        No timestamp is recorded, no cooldown is entered and nothing is logged.
        """
        policy = self.policies.get(action_id)
        if policy is None:
            return UNRESTRICTED

        with self._lock:
            now = self._clock()
            state = self._states.get(action_id)
            if state is None:
                return Decision(allowed=True, remaining=policy.capacity, retry_after_ms=0)

            if state.cooldown_until > now:
                retry_after_ms = state.cooldown_until - now
                return Decision(
                    allowed=False,
                    remaining=0,
                    retry_after_ms=retry_after_ms,
                    message=_cooldown_message(retry_after_ms),
                    reason=RejectionReason.COOLDOWN,
                )

            window_start = now - policy.window_ms
            active = [ts for ts in state.admitted_timestamps if ts > window_start]

        remaining = max(0, policy.capacity - len(active))
        if remaining > 0:
            return Decision(allowed=True, remaining=remaining, retry_after_ms=0)

        retry_after_ms = self._limit_retry_after(policy, active, now)
        return Decision(
            allowed=False,
            remaining=0,
            retry_after_ms=retry_after_ms,
            message=_limit_message(retry_after_ms),
            reason=RejectionReason.LIMIT_REACHED,
        )

    @staticmethod
    def _limit_retry_after(policy: ActionPolicy, active: List[int], now: int) -> int:
        if policy.has_cooldown:
            return policy.cooldown_ms
        return active[0] + policy.window_ms - now

    def reset(self, action_id: str) -> None:
        """Forget all state for one action, as if it was never used."""
        with self._lock:
            self._states.pop(action_id, None)
        self.logger.debug("Throttle state reset", extra={"action_id": action_id})

    def reset_all(self) -> None:
        """Forget all action state."""
        with self._lock:
            self._states.clear()
        self.logger.debug("All throttle state reset")

    def get_log(self):
        """Return the retained throttle log entries, oldest first."""
        return self.sink.get_log()

    def wrap_guarded(
        self,
        fn: Callable[..., Awaitable[T]],
        action_id: str,
    ) -> Callable[..., Awaitable[T]]:
        """Wrap an async callable so each call is admitted first.

        Args:
            fn: Async callable performing the guarded action.
            action_id: Action identifier to check on every call.

        Returns:
            Async callable with the same signature, raising
            ``GuardedCallError`` when the governor rejects the call.
        """

        @functools.wraps(fn)
        async def guarded(*args: Any, **kwargs: Any) -> T:
            decision = self.check_and_consume(action_id)
            if not decision.allowed:
                raise GuardedCallError.from_decision(action_id, decision)
            return await fn(*args, **kwargs)

        return guarded


def create_governor(settings=None, clock: Optional[Clock] = None) -> RequestGovernor:
    """Build a governor wired from configuration.

    The throttle log is kept in a JSON file when ``THROTTLE_LOG_PATH`` is set,
    in memory otherwise.
    """
    settings = settings or default_config

    if settings.THROTTLE_LOG_PATH:
        storage = JsonFileLogStorage(settings.THROTTLE_LOG_PATH)
    else:
        storage = MemoryLogStorage()

    sink = ThrottleLogSink(storage=storage, max_entries=settings.THROTTLE_LOG_MAX_ENTRIES)
    return RequestGovernor(policies=default_policy_table(), sink=sink, clock=clock)
