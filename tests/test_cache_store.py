"""
Unit tests for the TTL cache store and cache key generation.

Time is driven by a fake clock so expiry is deterministic.
"""
import asyncio
import re
from dataclasses import dataclass
from datetime import date

import pytest

from config.settings import Settings
from fetchcache.cache.core import MISS, CacheEntry
from fetchcache.cache.keys import generate_key, namespace_pattern
from fetchcache.cache.store import TTLCacheStore
from fetchcache.resilience.errors import ServerError


@dataclass
class Period:
    year: int
    month: int


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return TTLCacheStore(default_ttl=300, clock=clock)


# =============================================================================
# Key Generation Tests
# =============================================================================

class TestGenerateKey:
    """Tests for canonical key generation."""

    def test_insertion_order_does_not_matter(self):
        """Same parameters in a different order give the same key"""
        assert generate_key({"a": 1, "b": 2}) == generate_key({"b": 2, "a": 1})

    def test_nested_mappings_are_sorted(self):
        """Nested mapping order does not affect the key"""
        first = generate_key({"filter": {"status": "open", "page": 1}})
        second = generate_key({"filter": {"page": 1, "status": "open"}})
        assert first == second

    def test_format(self):
        """Keys read as name=value pairs under an optional namespace"""
        assert generate_key({"page": 1, "status": "open"}) == 'page=1&status="open"'
        assert generate_key({"page": 1}, namespace="/api/orders") == "/api/orders?page=1"

    def test_empty_params(self):
        assert generate_key() == ""
        assert generate_key({}, namespace="/api/orders") == "/api/orders?"

    def test_value_types_are_distinguished(self):
        """Values that stringify alike still produce different keys"""
        assert generate_key({"a": 1}) != generate_key({"a": "1"})
        assert generate_key({"a": True}) != generate_key({"a": 1})
        assert generate_key({"a": None}) != generate_key({"a": "null"})
        assert generate_key({"a": [1, 2]}) != generate_key({"a": [2, 1]})

    def test_separators_in_values_cannot_collide(self):
        """A value containing separators never matches a different mapping"""
        assert generate_key({"a": "x&b=y"}) != generate_key({"a": "x", "b": "y"})

    def test_namespaces_are_distinct(self):
        params = {"page": 1}
        assert generate_key(params, namespace="/api/a") != generate_key(params, namespace="/api/b")

    def test_dataclass_distinct_from_mapping(self):
        """A dataclass and a dict with the same fields give different keys"""
        assert generate_key({"p": Period(2026, 10)}) != generate_key({"p": {"year": 2026, "month": 10}})
        assert generate_key({"p": Period(2026, 10)}) == generate_key({"p": Period(2026, 10)})

    def test_tuple_distinct_from_list(self):
        assert generate_key({"a": (1, 2)}) != generate_key({"a": [1, 2]})

    def test_date_distinct_from_string(self):
        assert generate_key({"d": date(2026, 10, 19)}) != generate_key({"d": "2026-10-19"})

    def test_sets_are_order_independent(self):
        assert generate_key({"ids": {3, 1, 2}}) == generate_key({"ids": {2, 3, 1}})

    def test_non_string_keys_rejected(self):
        with pytest.raises(TypeError):
            generate_key({1: "x"})

    def test_unserializable_value_rejected(self):
        with pytest.raises(TypeError):
            generate_key({"a": object()})

    def test_namespace_pattern(self):
        """Pattern matches only keys under the namespace"""
        pattern = namespace_pattern("/api/orders")
        assert pattern.search(generate_key({"page": 1}, namespace="/api/orders"))
        assert not pattern.search(generate_key({"page": 1}, namespace="/api/orders/archived"))


# =============================================================================
# Basic Operation Tests
# =============================================================================

class TestStoreBasics:
    """Tests for set/get/has/delete/clear."""

    def test_round_trip(self, store):
        """A stored value is returned before its TTL elapses"""
        store.set("key", {"balance": 10})
        assert store.get("key") == {"balance": 10}
        assert store.has("key")
        assert "key" in store

    def test_missing_key_returns_miss(self, store):
        assert store.get("absent") is MISS
        assert store.get("absent", default=None) is None

    def test_stored_none_is_distinct_from_miss(self, store):
        store.set("key", None)
        assert store.get("key") is None

    def test_entry_expires_after_ttl(self, store, clock):
        """Entries are absent once the TTL has fully elapsed"""
        store.set("key", "value", ttl=10)
        clock.advance(9)
        assert store.get("key") == "value"
        clock.advance(1)
        assert store.get("key") is MISS
        assert not store.has("key")
        assert len(store) == 0

    def test_default_ttl_used(self, store):
        store.set("key", "value")
        assert store.peek("key").ttl == 300

    def test_overwrite_restarts_ttl(self, store, clock):
        store.set("key", "old", ttl=10)
        clock.advance(8)
        store.set("key", "new", ttl=10)
        clock.advance(8)
        assert store.get("key") == "new"

    def test_non_positive_ttl_rejected(self, store):
        with pytest.raises(ValueError):
            store.set("key", "value", ttl=0)
        with pytest.raises(ValueError):
            store.set("key", "value", ttl=-1)

    def test_delete_is_idempotent(self, store):
        store.set("key", "value")
        assert store.delete("key") is True
        assert store.delete("key") is False
        assert store.get("key") is MISS

    def test_has_and_peek_do_not_count(self, store):
        store.set("key", "value")
        store.has("key")
        store.peek("key")
        stats = store.get_stats()
        assert stats.hit_count == 0
        assert stats.miss_count == 0

    def test_peek_returns_entry(self, store):
        store.set("key", "value", metadata={"endpoint": "/api/x"})
        entry = store.peek("key")
        assert isinstance(entry, CacheEntry)
        assert entry.metadata == {"endpoint": "/api/x"}

    def test_clear_removes_everything(self, store):
        store.set("a", 1)
        store.set("b", 2)
        assert store.clear() == 2
        assert len(store) == 0

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            TTLCacheStore(default_ttl=0)
        with pytest.raises(ValueError):
            TTLCacheStore(max_entries=0)
        with pytest.raises(ValueError):
            TTLCacheStore(eviction_fraction=0)


# =============================================================================
# Invalidation Tests
# =============================================================================

class TestInvalidation:
    """Tests for pattern invalidation and expiry sweeps."""

    def test_invalidate_by_regex_string(self, store):
        """Only keys matching the pattern are removed"""
        store.set("profile:user1", 1)
        store.set("orders:user1", 2)
        store.set("profile:user10", 3)

        assert store.invalidate_pattern("user1$") == 2
        assert store.get("profile:user1") is MISS
        assert store.get("orders:user1") is MISS
        assert store.get("profile:user10") == 3

    def test_invalidate_by_compiled_pattern(self, store):
        store.set("/api/customers/42/wallet?", 1)
        store.set("/api/customers/43/wallet?", 2)
        assert store.invalidate_pattern(re.compile(r"/customers/42/")) == 1
        assert len(store) == 1

    def test_invalidate_by_predicate(self, store):
        store.set("a1", 1)
        store.set("b1", 2)
        assert store.invalidate_pattern(lambda key: key.startswith("a")) == 1

    def test_invalidate_no_match(self, store):
        store.set("a", 1)
        assert store.invalidate_pattern("zzz") == 0

    def test_invalid_matcher_rejected(self, store):
        with pytest.raises(TypeError):
            store.invalidate_pattern(42)

    def test_sweep_expired(self, store, clock):
        store.set("short", 1, ttl=1)
        store.set("long", 2, ttl=100)
        clock.advance(5)
        assert store.sweep_expired() == 1
        assert len(store) == 1


# =============================================================================
# Capacity Tests
# =============================================================================

class TestCapacity:
    """Tests for bounded stores."""

    def test_oldest_entries_evicted(self, clock):
        """Exceeding capacity evicts the oldest fraction of entries"""
        store = TTLCacheStore(max_entries=10, eviction_fraction=0.2, clock=clock)
        for i in range(11):
            store.set(f"k{i}", i)
            clock.advance(1)

        assert len(store) == 9
        assert store.get("k0") is MISS
        assert store.get("k1") is MISS
        assert store.get("k10") == 10
        assert store.get_stats().eviction_count == 2

    def test_expired_entries_swept_first(self, clock):
        store = TTLCacheStore(max_entries=3, clock=clock)
        store.set("a", 1, ttl=1)
        store.set("b", 2)
        store.set("c", 3)
        clock.advance(2)
        store.set("d", 4)

        assert len(store) == 3
        assert store.get("b") == 2
        assert store.get("d") == 4


# =============================================================================
# Statistics Tests
# =============================================================================

class TestStats:
    """Tests for counters and snapshots."""

    def test_hit_rate(self, store):
        """One hit and one miss give a hit rate of 0.5"""
        store.set("key", "value")
        store.get("key")
        store.get("absent")
        stats = store.get_stats()
        assert stats.hit_count == 1
        assert stats.miss_count == 1
        assert stats.hit_rate == 0.5

    def test_hit_rate_without_lookups(self, store):
        assert store.get_stats().hit_rate == 0.0

    def test_counters_survive_clear(self, store):
        store.set("key", "value")
        store.get("key")
        store.get("absent")
        store.clear()
        stats = store.get_stats()
        assert stats.total_entries == 0
        assert stats.hit_count == 1
        assert stats.miss_count == 1

    def test_reset_stats(self, store):
        store.set("key", "value")
        store.get("key")
        store.reset_stats()
        stats = store.get_stats()
        assert stats.hit_count == 0
        assert stats.set_count == 0
        assert stats.total_entries == 1

    def test_snapshot_counts_expired_without_evicting(self, store, clock):
        store.set("a", 1, ttl=1)
        store.set("b", 2, ttl=100)
        clock.advance(2)
        stats = store.get_stats()
        assert stats.total_entries == 2
        assert stats.valid_entries == 1
        assert stats.expired_entries == 1
        assert len(store) == 2

    def test_entry_ages(self, store, clock):
        store.set("old", 1)
        clock.advance(10)
        store.set("new", 2)
        clock.advance(5)
        stats = store.get_stats()
        assert stats.oldest_entry_age == 15
        assert stats.newest_entry_age == 5

    def test_to_dict(self, store):
        store.set("key", "value")
        store.get("key")
        data = store.get_stats().to_dict()
        assert data["hitCount"] == 1
        assert data["hitRate"] == 1.0
        assert data["totalEntries"] == 1
        assert data["totalSize"] > 0


# =============================================================================
# Preload Tests
# =============================================================================

class TestPreload:
    """Tests for load-on-miss with shared loader calls."""

    @pytest.mark.asyncio
    async def test_concurrent_preload_calls_loader_once(self, store):
        """Concurrent preloads of one key share a single loader call"""
        calls = 0

        async def loader():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return {"bills": [1, 2]}

        results = await asyncio.gather(*(store.preload("bills", loader) for _ in range(3)))

        assert calls == 1
        assert all(result == {"bills": [1, 2]} for result in results)
        assert store.get("bills") == {"bills": [1, 2]}
        assert store.get_stats().deduped_count == 2

    @pytest.mark.asyncio
    async def test_preload_returns_cached_value(self, store):
        store.set("bills", "cached")

        async def loader():
            raise AssertionError("loader should not run")

        assert await store.preload("bills", loader) == "cached"

    @pytest.mark.asyncio
    async def test_preload_uses_given_ttl(self, store):
        async def loader():
            return "value"

        await store.preload("bills", loader, ttl=600)
        assert store.peek("bills").ttl == 600

    @pytest.mark.asyncio
    async def test_loader_failure_reaches_every_caller(self, store):
        """A failed load is shared and leaves nothing cached"""
        async def loader():
            await asyncio.sleep(0.01)
            raise ServerError("boom", status=500)

        results = await asyncio.gather(
            store.preload("bills", loader),
            store.preload("bills", loader),
            return_exceptions=True,
        )

        assert all(isinstance(result, ServerError) for result in results)
        assert store.get("bills") is MISS
        assert store.get_stats().in_flight == 0


def test_store_from_settings():
    """Store limits come from settings"""
    store = TTLCacheStore.from_settings(Settings(cache_default_ttl_seconds=60, cache_max_entries=5))
    assert store.default_ttl == 60
    store.set("key", "value")
    assert store.peek("key").ttl == 60
