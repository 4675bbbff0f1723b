# throttle/policies.py
"""Action policies for the request governor.

Each guardable operation is named by an action identifier string and maps to
an ``ActionPolicy``. Identifiers missing from the table are unrestricted.
"""

from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

# AI generation sub-operations
DEEP_STRATEGY = "gemini:deep-strategy"
MARKET_RESEARCH = "gemini:market-research"
AUTO_PROSPECT = "gemini:auto-prospect"
LEAD_ENRICHMENT = "gemini:lead-enrichment"
LIVE_ENRICHMENT = "gemini:live-enrichment"
OUTBOUND_DRAFT = "gemini:outbound-draft"
BOOLEAN_SEARCH = "gemini:boolean-search"
PARSE_LEAD = "gemini:parse-lead"
LOCATION_VERIFY = "gemini:location-verify"
BULK_DRAFTS = "gemini:bulk-drafts"

# Coarse data service traffic
DATA_READ = "data:read"
DATA_WRITE = "data:write"

MINUTE_MS = 60 * 1000


class ActionPolicy(BaseModel):
    """Limiting parameters for one action identifier."""

    model_config = ConfigDict(frozen=True)

    capacity: int = Field(..., gt=0, description="Max admitted attempts per window")
    window_ms: int = Field(..., gt=0, description="Sliding window length in ms")
    cooldown_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Penalty period entered once capacity is exceeded",
    )

    @property
    def has_cooldown(self) -> bool:
        """Whether exceeding capacity enters a penalty period.

        A zero cooldown behaves like no cooldown at all.
        """
        return bool(self.cooldown_ms)


PolicySource = Union[Mapping[str, ActionPolicy], Iterable[Tuple[str, ActionPolicy]]]


class PolicyTable:
    """Read-only mapping from action identifier to ``ActionPolicy``.

    Built once at startup. When the source registers the same identifier
    more than once, the later registration wins.

    Example:
        >>> table = PolicyTable({"data:read": ActionPolicy(capacity=60, window_ms=60000)})
        >>> table.get("data:read").capacity
        60
        >>> table.get("unknown") is None
        True
    """

    def __init__(self, policies: Optional[PolicySource] = None):
        items = policies.items() if isinstance(policies, Mapping) else (policies or ())

        registered = {}
        for action_id, policy in items:
            registered[action_id] = policy

        self._policies = MappingProxyType(registered)

    def get(self, action_id: str) -> Optional[ActionPolicy]:
        """Exact-match lookup; ``None`` means the action is unrestricted."""
        return self._policies.get(action_id)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._policies

    def __len__(self) -> int:
        return len(self._policies)

    def __iter__(self) -> Iterator[str]:
        return iter(self._policies)

    def as_dict(self) -> dict:
        """Return a plain copy of the registered policies."""
        return dict(self._policies)


DEFAULT_POLICIES = {
    # AI generation: generation cost varies per operation
    DEEP_STRATEGY: ActionPolicy(capacity=3, window_ms=MINUTE_MS, cooldown_ms=30 * 1000),
    MARKET_RESEARCH: ActionPolicy(capacity=5, window_ms=MINUTE_MS, cooldown_ms=20 * 1000),
    AUTO_PROSPECT: ActionPolicy(capacity=3, window_ms=MINUTE_MS, cooldown_ms=30 * 1000),
    LEAD_ENRICHMENT: ActionPolicy(capacity=10, window_ms=MINUTE_MS, cooldown_ms=15 * 1000),
    LIVE_ENRICHMENT: ActionPolicy(capacity=5, window_ms=MINUTE_MS, cooldown_ms=20 * 1000),
    OUTBOUND_DRAFT: ActionPolicy(capacity=10, window_ms=MINUTE_MS, cooldown_ms=15 * 1000),
    BOOLEAN_SEARCH: ActionPolicy(capacity=5, window_ms=MINUTE_MS, cooldown_ms=15 * 1000),
    PARSE_LEAD: ActionPolicy(capacity=10, window_ms=MINUTE_MS, cooldown_ms=10 * 1000),
    LOCATION_VERIFY: ActionPolicy(capacity=10, window_ms=MINUTE_MS, cooldown_ms=10 * 1000),
    BULK_DRAFTS: ActionPolicy(capacity=2, window_ms=MINUTE_MS, cooldown_ms=60 * 1000),
    # Data service: reads age out of the window, writes are penalised
    DATA_READ: ActionPolicy(capacity=60, window_ms=MINUTE_MS),
    DATA_WRITE: ActionPolicy(capacity=30, window_ms=MINUTE_MS, cooldown_ms=10 * 1000),
}


def default_policy_table() -> PolicyTable:
    """Build the policy table used by the application."""
    return PolicyTable(DEFAULT_POLICIES)
