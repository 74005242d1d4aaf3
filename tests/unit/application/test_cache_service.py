"""Tests for CacheService on top of the memory store."""

import pytest

from workshop.application.resilience.cache import CACHE_COLLECTION, CacheService
from workshop.domain.errors import CacheWriteError


@pytest.fixture
def cache(store, metrics, clock):
    return CacheService(store, metrics, ttl_s=300, clock=clock)


@pytest.mark.asyncio
async def test_set_then_get_within_ttl(cache, clock):
    await cache.set("workshop_capacity_current", {"total_capacity": 16})
    clock.advance(299)
    assert await cache.get("workshop_capacity_current") == {"total_capacity": 16}


@pytest.mark.asyncio
async def test_expired_entry_is_a_miss_and_deleted(cache, store, clock):
    await cache.set("k", {"v": 1})
    clock.advance(301)

    assert await cache.get("k") is None
    assert "k" not in store.dump(CACHE_COLLECTION)


@pytest.mark.asyncio
async def test_boundary_age_equal_to_ttl_is_a_hit(cache, clock):
    await cache.set("k", 1)
    clock.advance(300)
    assert await cache.get("k") == 1


@pytest.mark.asyncio
async def test_miss(cache, metrics):
    assert await cache.get("absent") is None
    assert metrics.snapshot()["cache.miss"]["count"] == 1


@pytest.mark.asyncio
async def test_entry_without_timestamp_is_treated_as_expired(cache, store):
    store.load(CACHE_COLLECTION, {"k": {"value": 5}})
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_unreadable_timestamp_is_expired_and_deleted(cache, store, metrics):
    store.load(CACHE_COLLECTION, {"k": {"value": 5, "cachedAt": "yesterday"}})

    assert await cache.get("k") is None

    assert "k" not in store.dump(CACHE_COLLECTION)
    snapshot = metrics.snapshot()
    assert snapshot["cache.expired"]["count"] == 1
    assert snapshot["cache.get"]["errors"] == 0


@pytest.mark.asyncio
async def test_read_failure_is_a_miss(cache, store, metrics):
    store.fail("get", CACHE_COLLECTION)
    assert await cache.get("k") is None
    assert metrics.snapshot()["cache.get"]["errors"] == 1


@pytest.mark.asyncio
async def test_write_failure_raises(cache, store):
    store.fail("set", CACHE_COLLECTION)
    with pytest.raises(CacheWriteError):
        await cache.set("k", 1)


@pytest.mark.asyncio
async def test_invalidate_by_prefix(cache, store):
    await cache.set("technician_metrics_2024-02", {"a": 1})
    await cache.set("technician_metrics_2024-03", {"a": 2})
    await cache.set("workshop_capacity_current", {"b": 1})

    removed = await cache.invalidate("technician_metrics")

    assert removed == 2
    assert list(store.dump(CACHE_COLLECTION)) == ["workshop_capacity_current"]


@pytest.mark.asyncio
async def test_invalidate_nothing_matching(cache, store):
    assert await cache.invalidate("nope") == 0
    assert store.count("batch_write") == 0


@pytest.mark.asyncio
async def test_invalidate_failure_raises(cache, store):
    await cache.set("workshop_capacity_current", 1)
    store.fail("batch_write")
    with pytest.raises(CacheWriteError):
        await cache.invalidate("workshop_capacity")
