"""Tests for the in-memory state store and the store selection."""

import asyncio

import pytest

from distlimit.app.exceptions import StoreUnavailable
from distlimit.app.services.state_store import (
    InMemoryStateStore,
    RedisStateStore,
    get_state_store,
)


def increment(prior):
    count = (prior or {}).get("count", 0) + 1
    return {"count": count}, count


class TestInMemoryStateStore:
    """Tests for InMemoryStateStore."""

    @pytest.mark.asyncio
    async def test_atomic_update_persists_state(self, store):
        assert await store.atomic_update("k", increment, 1000) == 1
        assert await store.atomic_update("k", increment, 1000) == 2
        assert await store.get("k") == {"count": 2}

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, store):
        seen = []

        def record(prior):
            seen.append(prior)
            return {"count": 1}, None

        await store.atomic_update("fresh", record, 1000)
        assert seen == [None]
        assert await store.get("other") is None

    @pytest.mark.asyncio
    async def test_expired_state_reads_as_fresh(self, store, clock):
        await store.atomic_update("k", increment, 2000)

        clock.advance(1.5)
        assert await store.get("k") == {"count": 1}

        clock.advance(0.5)
        assert await store.get("k") is None
        assert await store.atomic_update("k", increment, 2000) == 1

    @pytest.mark.asyncio
    async def test_update_refreshes_expiry(self, store, clock):
        await store.atomic_update("k", increment, 1000)
        clock.advance(0.8)
        await store.atomic_update("k", increment, 1000)
        clock.advance(0.8)

        assert await store.get("k") == {"count": 2}

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self, store):
        async def slow_increment(key):
            # Yield so the tasks interleave
            await asyncio.sleep(0)
            return await store.atomic_update(key, increment, 1000)

        results = await asyncio.gather(*(slow_increment("k") for _ in range(50)))

        assert sorted(results) == list(range(1, 51))
        assert await store.get("k") == {"count": 50}
        assert store._locks == {}

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.atomic_update("k", increment, 1000)
        await store.delete("k")
        await store.delete("never-written")

        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_invalid_ttl(self, store):
        with pytest.raises(ValueError):
            await store.atomic_update("k", increment, 0)

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, store, clock):
        await store.atomic_update("short", increment, 100)
        await store.atomic_update("long", increment, 10_000)
        clock.advance(1)

        assert await store.cleanup_expired() == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_timeout_maps_to_store_unavailable(self):
        class SlowStore(InMemoryStateStore):
            async def _atomic_update(self, key, updater, ttl_ms):
                await asyncio.sleep(1)

        store = SlowStore(timeout_ms=10)

        with pytest.raises(StoreUnavailable) as exc_info:
            await store.atomic_update("k", increment, 1000)
        assert exc_info.value.key == "k"
        assert exc_info.value.status_code == 503


class TestGetStateStore:
    """Tests for the global store selection."""

    def test_memory_by_default(self):
        store = get_state_store()
        assert isinstance(store, InMemoryStateStore)
        assert get_state_store() is store

    def test_explicit_backend(self):
        store = get_state_store(backend="redis", redis_url="redis://example:6379/1")
        assert isinstance(store, RedisStateStore)

    def test_force_new(self):
        first = get_state_store()
        assert get_state_store(force_new=True) is not first

    def test_timeout_from_settings(self):
        assert InMemoryStateStore().timeout_ms == 5
