"""Shared state store interface.

The engine's only source of cross-process state. Every store exposes a
single atomic read-modify-write: read the prior state of a key, let a pure
function compute the new state, write it back with an expiry, all
indivisible by any concurrent update of the same key. Plain get/increment
primitives cannot express strategies that read, time-adjust and
conditionally write.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from distlimit.app.core.config import settings
from distlimit.app.exceptions import StoreUnavailable

T = TypeVar("T")

State = Dict[str, Any]
StateUpdater = Callable[[Optional[State]], Tuple[State, T]]


class StateStore(ABC):
    """Abstract base class for shared state stores.

    ``atomic_update`` applies the per-call timeout budget; subclasses
    implement ``_atomic_update``. A missing key is passed to the updater as
    None and treated as fresh state.
    """

    def __init__(self, timeout_ms: Optional[int] = None) -> None:
        self.timeout_ms = timeout_ms or settings.store_timeout_ms

    async def atomic_update(self, key: str, updater: StateUpdater, ttl_ms: int) -> Any:
        """Atomically read, update and write ``key`` with an expiry.

        Args:
            key: Store key
            updater: Pure function (prior state or None) -> (new state, result)
            ttl_ms: Expiry written together with the new state

        Returns:
            The result half of the updater's return value

        Raises:
            StoreUnavailable: Network failure or timeout budget exceeded
            StoreOperationAborted: Contention exhausted the retry budget
        """
        if ttl_ms < 1:
            raise ValueError("ttl_ms must be at least 1")
        return await self._with_timeout(key, self._atomic_update(key, updater, ttl_ms))

    async def get(self, key: str) -> Optional[State]:
        """Read the state of ``key`` (diagnostics only), None if absent."""
        return await self._with_timeout(key, self._get(key))

    async def delete(self, key: str) -> None:
        """Remove ``key``."""
        await self._with_timeout(key, self._delete(key))

    async def close(self) -> None:
        """Release connections."""

    async def _with_timeout(self, key: str, operation) -> Any:
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(
                f"State store timed out after {self.timeout_ms}ms", key=key
            ) from e

    @abstractmethod
    async def _atomic_update(self, key: str, updater: StateUpdater, ttl_ms: int) -> Any:
        pass

    @abstractmethod
    async def _get(self, key: str) -> Optional[State]:
        pass

    @abstractmethod
    async def _delete(self, key: str) -> None:
        pass
