"""Rate limit rule models."""

import math
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from distlimit.app.core.config import settings

# Separator for composite dimensions such as "api_key+endpoint"
DIMENSION_SEPARATOR = "+"


class Algorithm(str, Enum):
    """Closed set of supported algorithms."""
    TOKEN_BUCKET = "token_bucket"
    SLIDING_WINDOW_COUNTER = "sliding_window_counter"
    FIXED_WINDOW = "fixed_window"


class FailPolicy(str, Enum):
    """Behavior when the shared state store cannot be reached."""
    OPEN = "open"
    CLOSED = "closed"


def _default_fail_policy() -> FailPolicy:
    return FailPolicy(settings.default_fail_policy)


class Rule(BaseModel):
    """An immutable quota for one dimension.

    Attributes:
        dimension: Dimension name, or several joined with "+" (all must be present)
        algorithm: Which strategy enforces the quota
        limit: Max events per window (token bucket: capacity)
        window_ms: Window size; ignored for token_bucket
        refill_per_sec: Refill rate; token_bucket only
        cost: Units consumed per event
        fail_policy: open (admit) or closed (deny) when the store fails
        name: Optional stable identifier, derived from the fields otherwise
        priority: Lower runs first; ties go to the smaller limit
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    dimension: str
    algorithm: Algorithm
    limit: int
    window_ms: int = 0
    refill_per_sec: float = 0.0
    cost: int = 1
    fail_policy: FailPolicy = Field(default_factory=_default_fail_policy)
    name: Optional[str] = None
    priority: int = 0

    @field_validator("dimension")
    @classmethod
    def validate_dimension(cls, v: str) -> str:
        parts = [p.strip() for p in v.split(DIMENSION_SEPARATOR)]
        if not all(parts):
            raise ValueError(f"dimension must not have empty components: {v!r}")
        return DIMENSION_SEPARATOR.join(parts)

    @field_validator("limit", "cost")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limit and cost are positive."""
        if v < 1:
            raise ValueError("limit and cost must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_algorithm_parameters(self) -> "Rule":
        """Check the parameters each algorithm needs."""
        if self.algorithm is Algorithm.TOKEN_BUCKET:
            if not self.refill_per_sec > 0 or math.isinf(self.refill_per_sec):
                raise ValueError("token_bucket requires a positive refill_per_sec")
        elif self.window_ms < 1:
            raise ValueError(f"{self.algorithm.value} requires window_ms >= 1")
        if self.cost > self.limit:
            raise ValueError(
                f"cost {self.cost} exceeds limit {self.limit}; every request would be denied"
            )
        return self

    @property
    def id(self) -> str:
        """Stable identifier used in store keys and metrics."""
        if self.name:
            return self.name
        if self.algorithm is Algorithm.TOKEN_BUCKET:
            return f"{self.dimension}:{self.algorithm.value}:{self.limit}:{self.refill_per_sec:g}"
        return f"{self.dimension}:{self.algorithm.value}:{self.limit}:{self.window_ms}"

    @property
    def dimension_parts(self) -> tuple[str, ...]:
        return tuple(self.dimension.split(DIMENSION_SEPARATOR))

    @property
    def refill_interval_ms(self) -> int:
        """Time for an empty bucket to fill up again."""
        return math.ceil(self.limit / self.refill_per_sec * 1000)

    @property
    def ttl_ms(self) -> int:
        """How long state must survive in the store after the last touch."""
        if self.algorithm is Algorithm.TOKEN_BUCKET:
            return max(self.refill_interval_ms, 1000)
        if self.algorithm is Algorithm.SLIDING_WINDOW_COUNTER:
            return 2 * self.window_ms
        return self.window_ms

    @property
    def retry_hint_ms(self) -> int:
        """Retry delay to report when no state could be consulted."""
        if self.algorithm is Algorithm.TOKEN_BUCKET:
            return math.ceil(self.cost / self.refill_per_sec * 1000)
        return self.window_ms
