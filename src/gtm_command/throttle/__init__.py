"""Client-side request governor.

Throttles outbound calls to the generative-AI API and the hosted data
service, independent of any server-side enforcement:
- Policy table: per-action capacity, window and cooldown
- Governor: sliding-window admission decisions
- Sink: capped, session-scoped log of rejections
"""

from .governor import (
    GuardedCallError,
    RequestGovernor,
    create_governor,
    is_throttle_rejection,
    monotonic_ms,
)
from .models import Decision, RejectionReason, ThrottleLogEntry
from .policies import (
    DEFAULT_POLICIES,
    ActionPolicy,
    PolicyTable,
    default_policy_table,
)
from .sink import (
    JsonFileLogStorage,
    LogStorage,
    MemoryLogStorage,
    ThrottleLogSink,
)

__all__ = [
    "ActionPolicy",
    "DEFAULT_POLICIES",
    "Decision",
    "GuardedCallError",
    "JsonFileLogStorage",
    "LogStorage",
    "MemoryLogStorage",
    "PolicyTable",
    "RejectionReason",
    "RequestGovernor",
    "ThrottleLogEntry",
    "ThrottleLogSink",
    "create_governor",
    "default_policy_table",
    "is_throttle_rejection",
    "monotonic_ms",
]
