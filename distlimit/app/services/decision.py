"""Rate limit decision returned to callers."""

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from distlimit.app.services.rules.models import Rule
from distlimit.app.services.strategies.models import StrategyOutcome


@dataclass(frozen=True)
class Decision:
    """Outcome of one rate limit check.

    Attributes:
        allowed: Whether the request is admitted
        limit: Limit of the reported (most restrictive) dimension
        remaining: Events left on that dimension, 0 when denied
        reset_at: Unix seconds when that dimension's quota is fully back
        retry_after_ms: Suggested wait when denied, 0 when allowed
        rule_id: Rule behind the reported dimension, None when no rule applied
        dimension: Dimension behind the reported metadata
        uncertain: The store could not be consulted (fail-open/closed outcome)
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_ms: int = 0
    rule_id: Optional[str] = None
    dimension: Optional[str] = None
    uncertain: bool = False

    @classmethod
    def unrestricted(cls, now: float) -> "Decision":
        """Decision for a request no rule applies to."""
        return cls(allowed=True, limit=0, remaining=0, reset_at=now)

    @classmethod
    def from_outcome(cls, rule: Rule, outcome: StrategyOutcome) -> "Decision":
        return cls(
            allowed=outcome.allowed,
            limit=outcome.limit,
            remaining=0 if not outcome.allowed else outcome.remaining,
            reset_at=outcome.reset_at_ms / 1000,
            retry_after_ms=0 if outcome.allowed else outcome.retry_after_ms,
            rule_id=rule.id,
            dimension=rule.dimension,
        )

    @classmethod
    def from_failure(cls, rule: Rule, allowed: bool, now_ms: int) -> "Decision":
        """Decision for a dimension whose store call failed."""
        retry_after_ms = 0 if allowed else rule.retry_hint_ms
        return cls(
            allowed=allowed,
            limit=rule.limit,
            remaining=rule.limit if allowed else 0,
            reset_at=(now_ms + rule.retry_hint_ms) / 1000,
            retry_after_ms=retry_after_ms,
            rule_id=rule.id,
            dimension=rule.dimension,
            uncertain=True,
        )

    @property
    def retry_after_seconds(self) -> int:
        """Retry-After in whole seconds, rounded up."""
        if self.allowed:
            return 0
        return max(1, math.ceil(self.retry_after_ms / 1000))

    def restrictiveness(self) -> tuple:
        """Sort key: denials first, then fewest remaining, then longest wait."""
        return (self.allowed, self.remaining, -self.retry_after_ms)

    def to_headers(self) -> Dict[str, str]:
        """HTTP rate limit headers for this decision."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
