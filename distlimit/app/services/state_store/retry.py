"""Bounded retry with exponential backoff for store contention.

An atomic update that loses a race (the watched key changed before the
transaction committed) is retried a fixed number of times, so the worst-case
latency of a rate limit check stays bounded.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type

from redis.exceptions import WatchError

from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one (default: 3)
        base_delay: Delay before the first retry in seconds (default: 0.0005)
        max_delay: Maximum delay between retries in seconds (default: 0.002)
        exponential_base: Base for exponential calculation (default: 2.0)
        retryable_exceptions: Tuple of exception types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_attempts=5, base_delay=0.001, max_delay=0.01)
        >>> policy.calculate_delay(attempt=2)
        0.004
    """

    max_attempts: int = 3
    base_delay: float = 0.0005
    max_delay: float = 0.002
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[Exception], ...] = (WatchError,)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        """Build the policy from the store settings (milliseconds)."""
        return cls(
            max_attempts=settings.store_max_attempts,
            base_delay=settings.store_retry_base_delay_ms / 1000,
            max_delay=settings.store_retry_max_delay_ms / 1000,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Uses exponential backoff: delay = min(base_delay * (exponential_base ^ attempt), max_delay)

        Args:
            attempt: The current retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    def is_retryable(self, exception: Exception) -> bool:
        """Check if an exception should trigger a retry."""
        return isinstance(exception, self.retryable_exceptions)

    async def run(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func`` until it succeeds or the attempts run out.

        Raises:
            The last exception once ``max_attempts`` is exhausted, or any
            non-retryable exception immediately.
        """
        for attempt in range(self.max_attempts):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e):
                    raise
                if attempt >= self.max_attempts - 1:
                    logger.warning(
                        f"Max attempts ({self.max_attempts}) exceeded for "
                        f"{getattr(func, '__name__', func)}: {type(e).__name__}"
                    )
                    raise
                delay = self.calculate_delay(attempt)
                logger.debug(
                    f"Retry {attempt + 1}/{self.max_attempts - 1} after "
                    f"{type(e).__name__}. Waiting {delay * 1000:.2f}ms..."
                )
                await asyncio.sleep(delay)
        raise RuntimeError("RetryPolicy.max_attempts must be at least 1")
