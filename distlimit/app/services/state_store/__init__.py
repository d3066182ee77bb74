"""Shared state store backends.

Provides a pluggable store with in-memory and Redis implementations.
"""

from typing import Optional

from distlimit.app.services.state_store.base import State, StateStore, StateUpdater
from distlimit.app.services.state_store.memory import InMemoryStateStore
from distlimit.app.services.state_store.redis_store import RedisStateStore
from distlimit.app.services.state_store.retry import RetryPolicy

# Global store instance (singleton pattern)
_store_instance: Optional[StateStore] = None


def get_state_store(
    backend: Optional[str] = None,
    redis_url: Optional[str] = None,
    force_new: bool = False,
) -> StateStore:
    """Get or create the global state store.

    Args:
        backend: 'memory', 'redis', or None to follow settings.redis_enabled
        redis_url: Redis connection URL, defaults to settings.redis_url
        force_new: Create a new instance even if one exists

    Returns:
        A StateStore instance (InMemoryStateStore or RedisStateStore)
    """
    global _store_instance

    if _store_instance is not None and not force_new:
        return _store_instance

    from distlimit.app.core.config import settings

    if backend == "redis":
        use_redis = True
    elif backend == "memory":
        use_redis = False
    else:
        use_redis = settings.redis_enabled

    if use_redis:
        _store_instance = RedisStateStore(redis_url=redis_url)
    else:
        _store_instance = InMemoryStateStore()
    return _store_instance


def reset_state_store() -> None:
    """Reset the global store instance (useful for testing)."""
    global _store_instance
    _store_instance = None


__all__ = [
    "State",
    "StateStore",
    "StateUpdater",
    "InMemoryStateStore",
    "RedisStateStore",
    "RetryPolicy",
    "get_state_store",
    "reset_state_store",
]
