"""Time utilities shared by the rate limiting strategies."""

import time
from typing import Optional


def now_seconds() -> float:
    """Current unix time in seconds."""
    return time.time()


def to_millis(timestamp: Optional[float] = None) -> int:
    """Convert a unix timestamp in seconds to whole milliseconds.

    Strategies work on integer milliseconds so that every process computes
    the same window index for the same instant.

    Examples:
        >>> to_millis(59.9)
        59900
        >>> to_millis(0.2)
        200
    """
    if timestamp is None:
        timestamp = now_seconds()
    return int(round(timestamp * 1000))


def window_index(now_ms: int, window_ms: int) -> int:
    """Index of the fixed window that contains ``now_ms``.

    Examples:
        >>> window_index(999, 1000)
        0
        >>> window_index(1000, 1000)
        1
    """
    return now_ms // window_ms
