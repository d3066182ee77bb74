"""State and outcome models for the rate limiting strategies.

States are stored as JSON dicts so every process, whatever its version of
this package, reads the same fields.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict


@dataclass
class BucketState:
    """Token bucket state for one key.

    Attributes:
        tokens: Tokens left (fractional)
        last_refill_ms: Time of the last refill, unix milliseconds
    """
    tokens: float
    last_refill_ms: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BucketState":
        """Create from dictionary."""
        return cls(
            tokens=float(data["tokens"]),
            last_refill_ms=int(data["last_refill_ms"]),
        )


@dataclass
class WindowCounterState:
    """Sliding window counter state: two adjacent window counts.

    Attributes:
        window_start_ms: Start of the current window, unix milliseconds
        current_count: Events counted in the current window
        previous_count: Events counted in the window before it
        last_seen_ms: Latest request time applied to this state
    """
    window_start_ms: int
    current_count: int = 0
    previous_count: int = 0
    last_seen_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WindowCounterState":
        return cls(
            window_start_ms=int(data["window_start_ms"]),
            current_count=int(data.get("current_count", 0)),
            previous_count=int(data.get("previous_count", 0)),
            last_seen_ms=int(data.get("last_seen_ms", data["window_start_ms"])),
        )


@dataclass
class FixedWindowState:
    """Fixed window counter state."""
    window_start_ms: int
    count: int = 0
    last_seen_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixedWindowState":
        return cls(
            window_start_ms=int(data["window_start_ms"]),
            count=int(data.get("count", 0)),
            last_seen_ms=int(data.get("last_seen_ms", data["window_start_ms"])),
        )


@dataclass
class StrategyOutcome:
    """Result of one strategy step for one dimension.

    Attributes:
        allowed: Whether the event was admitted
        limit: Configured limit (token bucket: capacity)
        remaining: Events left after this one, 0 when denied
        reset_at_ms: When the quota is fully available again
        retry_after_ms: Wait before retrying, 0 when allowed
        skew_ms: How far ``now`` ran behind the stored state
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_ms: int = 0
    skew_ms: int = field(default=0)
