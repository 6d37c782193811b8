"""
Unit tests for the in-process memory cache (tier 1).
"""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
from fixtures.manual_clock import ManualClock

from botsbrain.cache.memory_cache import MemoryCache


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(ttl=3600, cleanup_interval=60, clock=clock)


class TestMemoryCacheBasics:
    """Basic get/set/delete."""

    def test_set_and_get(self, cache):
        cache.set("user:state:1", {"field": "summary"})

        assert cache.get("user:state:1") == {"field": "summary"}
        assert cache.contains("user:state:1")

    def test_get_missing_returns_default(self, cache):
        assert cache.get("nope") is None
        assert cache.get("nope", "fallback") == "fallback"

    def test_delete(self, cache):
        cache.set("k", 1)

        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()

        assert len(cache) == 0

    def test_values_are_copied(self, cache):
        value = {"tags": ["a"]}
        cache.set("k", value)
        value["tags"].append("b")

        returned = cache.get("k")
        returned["tags"].append("c")

        assert cache.get("k") == {"tags": ["a"]}


class TestMemoryCacheExpiry:
    """Lazy expiry and TTL capping."""

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("k", "v")
        clock.advance(3599)
        assert cache.get("k") == "v"

        clock.advance(2)
        assert cache.get("k") is None
        # Lazy expiry removed it physically
        assert len(cache) == 0

    def test_shorter_caller_ttl_wins(self, cache, clock):
        cache.set("session:setup:s1", {"sessionId": "s1"}, ttl=600)
        clock.advance(601)

        assert cache.get("session:setup:s1") is None

    def test_longer_caller_ttl_is_capped(self, cache, clock):
        cache.set("k", "v", ttl=10 * 3600)
        clock.advance(3601)

        assert cache.get("k") is None

    def test_zero_ttl_uses_cache_ttl(self, cache, clock):
        cache.set("admin:profile:1", {"id": 1}, ttl=0)
        clock.advance(3000)

        assert cache.get("admin:profile:1") == {"id": 1}

    def test_cleanup_expired_counts_removed(self, cache, clock):
        cache.set("short", 1, ttl=10)
        cache.set("long", 2)
        clock.advance(11)

        assert cache.cleanup_expired() == 1
        assert len(cache) == 1
        assert cache.get("long") == 2


class TestMemoryCacheSweeper:
    """Background sweep task."""

    @pytest.mark.asyncio
    async def test_sweeper_removes_abandoned_keys(self, clock):
        cache = MemoryCache(ttl=60, cleanup_interval=0.01, clock=clock)
        cache.set("abandoned", "x")
        clock.advance(61)

        cache.start_sweeper()
        assert cache.sweeper_running
        await asyncio.sleep(0.05)

        # Removed without ever being read
        assert len(cache) == 0

        await cache.stop_sweeper()
        assert not cache.sweeper_running

    @pytest.mark.asyncio
    async def test_start_sweeper_twice_keeps_one_task(self, cache):
        cache.start_sweeper()
        task = cache._sweep_task
        cache.start_sweeper()

        assert cache._sweep_task is task
        await cache.stop_sweeper()


class TestMemoryCacheIntrospection:
    """Contents and stats for debugging."""

    def test_memory_stats_group_by_prefix(self, cache, clock):
        cache.set("ticket:telegram:1", {"a": 1})
        cache.set("ticket:friendly:T-1", {"a": 1})
        cache.set("user:state:9", {"b": 2}, ttl=5)
        clock.advance(6)

        stats = cache.get_memory_stats()

        assert stats["total_keys"] == 3
        assert stats["expired_keys"] == 1
        assert stats["active_keys"] == 2
        assert stats["key_types"]["ticket"]["count"] == 2
        assert stats["key_types"]["user"]["count"] == 1
        assert stats["memory_ttl"] == 3600

    def test_memory_contents_flags_expired(self, cache, clock):
        cache.set("k", "v", ttl=5)
        clock.advance(6)

        contents = cache.get_memory_contents()

        assert len(contents) == 1
        assert contents[0]["key"] == "k"
        assert contents[0]["is_expired"] is True

    def test_hit_rate(self, cache):
        cache.set("k", "v")
        cache.get("k")
        cache.get("missing")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
