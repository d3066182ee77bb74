"""In-memory state store with per-key locking and TTL support.

This store is not distributed and data is lost when the process restarts.
It is meant for single-process deployments and tests. Values go through
JSON like they do in Redis, so strategies see the same data shapes.
"""

import asyncio
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Optional

from distlimit.app.services.state_store.base import State, StateStore, StateUpdater


@dataclass
class _StoreEntry:
    """Internal store entry with TTL tracking."""

    value: str
    expires_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms


class InMemoryStateStore(StateStore):
    """State store backed by a dict.

    Each key has its own asyncio.Lock, held only for the duration of one
    update; updates of different keys never wait on each other. Locks are
    dropped once no task holds or waits for them.

    Expired entries are only removed when their key is read again. Keys of
    identities that never come back stay in memory until the owner calls
    ``cleanup_expired()``, which must be run periodically (for example from
    a background task in the application lifespan).
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source returning unix time in seconds (drives expiry)
            timeout_ms: Per-operation budget, defaults to settings.store_timeout_ms
        """
        super().__init__(timeout_ms)
        self._clock = clock
        self._data: Dict[str, _StoreEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @asynccontextmanager
    async def _key_lock(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    def _read(self, key: str) -> Optional[State]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._now_ms()):
            del self._data[key]
            return None
        return json.loads(entry.value)

    async def _atomic_update(self, key: str, updater: StateUpdater, ttl_ms: int) -> Any:
        async with self._key_lock(key):
            new_state, result = updater(self._read(key))
            self._data[key] = _StoreEntry(
                value=json.dumps(new_state),
                expires_at_ms=self._now_ms() + ttl_ms,
            )
            return result

    async def _get(self, key: str) -> Optional[State]:
        return self._read(key)

    async def _delete(self, key: str) -> None:
        async with self._key_lock(key):
            self._data.pop(key, None)

    async def cleanup_expired(self) -> int:
        """Remove all expired entries from the store.

        Returns:
            Number of entries removed.
        """
        now_ms = self._now_ms()
        expired_keys = [
            key for key, entry in self._data.items()
            if entry.is_expired(now_ms) and key not in self._locks
        ]
        for key in expired_keys:
            del self._data[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._data)
