"""Redis-backed state store for multi-instance deployments.

Atomic updates use optimistic compare-and-swap: WATCH the key, read it,
compute the new state locally, then MULTI / SET ... PX / EXEC. If another
process wrote the key in between, EXEC fails with WatchError and the whole
read-compute-write is retried under a bounded RetryPolicy. The expiry is
written by the same SET, so inactive identities are reclaimed by Redis
without a sweep process.

Redis key format:
- {key_prefix}:{rule_id}:{algorithm}:{dimension}:{identifier_hash}[:{window_index}]
"""

import json
from typing import Any, Optional

from redis.exceptions import RedisError, WatchError

from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_log_context, get_logger
from distlimit.app.exceptions import StoreOperationAborted, StoreUnavailable
from distlimit.app.services.state_store.base import State, StateStore, StateUpdater
from distlimit.app.services.state_store.retry import RetryPolicy

logger = get_logger(__name__)


def _decode(key: str, raw: Optional[bytes]) -> Optional[State]:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        # Unreadable values are overwritten with fresh state
        logger.warning(
            "Discarding undecodable rate limit state",
            extra=get_log_context(rate_limit_key=key),
        )
        return None


class RedisStateStore(StateStore):
    """State store on Redis using WATCH/MULTI/EXEC."""

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_ms: Optional[int] = None,
    ) -> None:
        """Initialize the Redis state store.

        Args:
            redis_client: Optional redis.asyncio client instance
            redis_url: Redis connection URL, defaults to settings.redis_url
            retry_policy: CAS retry budget, defaults to the store settings
            timeout_ms: Per-operation budget, retries included
        """
        super().__init__(timeout_ms)
        self._redis = redis_client
        self._redis_url = redis_url or settings.redis_url
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def _atomic_update(self, key: str, updater: StateUpdater, ttl_ms: int) -> Any:
        try:
            return await self.retry_policy.run(self._compare_and_swap, key, updater, ttl_ms)
        except WatchError as e:
            raise StoreOperationAborted(
                f"Atomic update of {key} lost {self.retry_policy.max_attempts} races",
                key=key,
                attempts=self.retry_policy.max_attempts,
            ) from e
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis error: {type(e).__name__}: {e}", key=key) from e

    async def _compare_and_swap(self, key: str, updater: StateUpdater, ttl_ms: int) -> Any:
        """One optimistic read-compute-write attempt.

        Raises:
            WatchError: If the key changed before EXEC
        """
        client = self._get_redis()
        async with client.pipeline(transaction=True) as pipe:
            await pipe.watch(key)
            prior = _decode(key, await pipe.get(key))
            new_state, result = updater(prior)
            pipe.multi()
            pipe.set(key, json.dumps(new_state, separators=(",", ":")), px=ttl_ms)
            await pipe.execute()
        return result

    async def _get(self, key: str) -> Optional[State]:
        try:
            raw = await self._get_redis().get(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis error: {type(e).__name__}: {e}", key=key) from e
        return _decode(key, raw)

    async def _delete(self, key: str) -> None:
        try:
            await self._get_redis().delete(key)
        except (RedisError, OSError) as e:
            raise StoreUnavailable(f"Redis error: {type(e).__name__}: {e}", key=key) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except (RedisError, OSError) as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
