# throttle/models.py
"""Records produced by the request governor."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


class RejectionReason(str, Enum):
    """Why an attempt was not admitted."""

    COOLDOWN = "cooldown"
    LIMIT_REACHED = "limit-reached"


@dataclass(frozen=True)
class Decision:
    """Outcome of an admission check.

    Attributes:
        allowed: Whether the attempt is (or would be) admitted.
        remaining: Attempts left in the current window; ``math.inf`` for
            unrestricted actions.
        retry_after_ms: Milliseconds until a retry can succeed, 0 when allowed.
        message: User-facing explanation, empty when allowed.
        reason: Rejection reason, ``None`` when allowed.
    """

    allowed: bool
    remaining: Union[int, float]
    retry_after_ms: Union[int, float] = 0
    message: str = ""
    reason: Optional[RejectionReason] = None

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up."""
        return retry_seconds(self.retry_after_ms)

    @property
    def unbounded(self) -> bool:
        return math.isinf(self.remaining)


def retry_seconds(retry_after_ms: Union[int, float]) -> int:
    """Convert a millisecond wait into whole seconds, rounded up."""
    return int(math.ceil(retry_after_ms / 1000))


class ThrottleLogEntry(BaseModel):
    """Diagnostic record of one rejected attempt."""

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the rejection happened (UTC)",
    )
    action_id: str = Field(..., description="Action identifier that was rejected")
    reason: RejectionReason = Field(..., description="Rejection reason")
    retry_after_ms: int = Field(..., ge=0, description="Computed wait in ms")
    retry_after_sec: int = Field(default=0, ge=0, description="Wait rounded up to seconds")
