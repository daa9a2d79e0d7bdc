"""
Tests for the TTL cache, cache key builder and get_cached_data.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from cache import CacheKeys, TTLCache, build_cache_key, get_cached_data


@pytest.fixture
def cache(clock):
    return TTLCache("test", default_ttl=10.0, max_size=3, clock=clock)


class TestTTLCacheExpiry:
    """get/has honour TTL and delete expired entries lazily."""

    def test_set_then_get_returns_value(self, cache):
        cache.set("k1", {"a": 1})
        assert cache.get("k1") == {"a": 1}

    def test_missing_key_returns_none(self, cache):
        assert cache.get("nope") is None

    def test_value_valid_until_ttl_elapses(self, cache, clock):
        cache.set("k1", "v", ttl=5.0)
        clock.advance(5.0)
        assert cache.get("k1") == "v"

    def test_value_absent_right_after_ttl(self, cache, clock):
        cache.set("k1", "v", ttl=5.0)
        clock.advance(5.001)
        assert cache.get("k1") is None
        assert len(cache) == 0

    def test_default_ttl_used_when_not_given(self, cache, clock):
        cache.set("k1", "v")
        clock.advance(10.5)
        assert cache.get("k1") is None

    def test_has_deletes_expired_entry(self, cache, clock):
        cache.set("k1", "v", ttl=1.0)
        assert cache.has("k1") is True
        clock.advance(2.0)
        assert cache.has("k1") is False
        assert len(cache) == 0

    def test_overwrite_resets_created_at(self, cache, clock):
        cache.set("k1", "old", ttl=5.0)
        clock.advance(4.0)
        cache.set("k1", "new", ttl=5.0)
        clock.advance(4.0)
        assert cache.get("k1") == "new"

    def test_falsy_values_are_cached(self, cache):
        cache.set("empty", [])
        assert cache.get("empty") == []


class TestTTLCacheCapacity:
    """FIFO eviction keeps size within max_size."""

    def test_full_cache_evicts_oldest_inserted(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.set("d", 4)

        assert len(cache) == 3
        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("d") == 4
        assert cache.stats["evictions"] == 1

    def test_eviction_ignores_access_recency(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")  # FIFO, not LRU
        cache.set("d", 4)
        assert cache.get("a") is None

    def test_overwrite_at_capacity_does_not_evict(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.set("b", 20)
        assert len(cache) == 3
        assert cache.get("a") == 1
        assert cache.stats["evictions"] == 0

    def test_size_never_exceeds_capacity(self, cache):
        for i in range(50):
            cache.set(f"k{i}", i)
            assert len(cache) <= 3


class TestTTLCacheInvalidation:
    def test_delete_reports_removal(self, cache):
        cache.set("k1", "v")
        assert cache.delete("k1") is True
        assert cache.delete("k1") is False

    def test_clear_removes_everything(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_invalidate_pattern_removes_only_matches(self, clock):
        cache = TTLCache("subs", max_size=10, clock=clock)
        cache.set("submissions:student:u1", [1])
        cache.set("submissions:student:u2", [2])
        cache.set("submissions:task:t1", [3])
        cache.set("submission:s1", {})

        removed = cache.invalidate_pattern("^submissions:student:")

        assert removed == 2
        assert cache.get("submissions:student:u1") is None
        assert cache.get("submissions:student:u2") is None
        assert cache.get("submissions:task:t1") == [3]
        assert cache.get("submission:s1") == {}

    def test_cleanup_expired_sweeps_cold_keys(self, cache, clock):
        cache.set("short", 1, ttl=1.0)
        cache.set("long", 2, ttl=100.0)
        clock.advance(2.0)

        assert cache.cleanup_expired() == 1
        assert len(cache) == 1
        assert cache.get("long") == 2


class TestTTLCacheSweeper:
    @pytest.mark.asyncio
    async def test_sweeper_removes_expired_entries_without_access(self, cache, clock):
        cache.set("cold", 1, ttl=1.0)
        clock.advance(5.0)

        cache.start_sweeper(interval=0.01)
        try:
            await asyncio.sleep(0.05)
            assert len(cache) == 0
        finally:
            await cache.stop_sweeper()

        assert cache.sweeper_running is False

    @pytest.mark.asyncio
    async def test_start_sweeper_is_idempotent(self, cache):
        cache.start_sweeper(interval=10)
        first = cache._sweeper
        cache.start_sweeper(interval=10)
        assert cache._sweeper is first
        await cache.stop_sweeper()
        await cache.stop_sweeper()


class TestCacheStats:
    def test_hit_rate(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("missing")
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["size"] == 1
        assert stats["max_size"] == 3


class TestBuildCacheKey:
    def test_key_order_independent(self):
        assert build_cache_key("p", {"a": 1, "b": 2}) == build_cache_key("p", {"b": 2, "a": 1})

    def test_format(self):
        assert build_cache_key("chat_messages", {"offset": 0, "limit": 100}) == \
            "chat_messages:limit:100|offset:0"

    def test_empty_params_returns_prefix(self):
        assert build_cache_key("dashboard_stats", {}) == "dashboard_stats"
        assert build_cache_key("dashboard_stats") == "dashboard_stats"

    def test_canonical_keys(self):
        assert CacheKeys.submissions_for_student("u1") == "submissions:student:u1"
        assert CacheKeys.course_modules("c1") == "course:c1:modules"
        assert CacheKeys.dashboard_stats("u1") == "dashboard_stats:user_id:u1"
        assert CacheKeys.chat_messages(100, 0) == "chat_messages:limit:100|offset:0"

    def test_task_list_keys(self):
        assert CacheKeys.tasks_all() == "tasks:all"
        assert CacheKeys.tasks_all(include_counts=True) == "tasks:all:include_counts:true"
        assert CacheKeys.tasks_for_topic("topic-1") == "tasks:topic:topic-1"
        assert CacheKeys.tasks_for_topic("topic-1", True) == "tasks:topic:topic-1:include_counts:true"


class TestGetCachedData:
    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, cache):
        fetcher = AsyncMock(return_value={"n": 1})
        assert await get_cached_data("k", fetcher, cache) == {"n": 1}
        assert cache.get("k") == {"n": 1}
        fetcher.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_hit_skips_fetcher(self, cache):
        cache.set("k", "cached")
        fetcher = AsyncMock(return_value="fresh")
        assert await get_cached_data("k", fetcher, cache) == "cached"
        fetcher.assert_not_called()

    @pytest.mark.asyncio
    async def test_custom_ttl(self, cache, clock):
        await get_cached_data("k", AsyncMock(return_value=1), cache, ttl=1.0)
        clock.advance(1.5)
        assert cache.get("k") is None

    @pytest.mark.asyncio
    async def test_fetcher_error_propagates_and_nothing_cached(self, cache):
        fetcher = AsyncMock(side_effect=RuntimeError("upstream down"))
        with pytest.raises(RuntimeError, match="upstream down"):
            await get_cached_data("k", fetcher, cache)
        assert cache.has("k") is False
