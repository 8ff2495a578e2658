"""Tests for the bounded, age-aware LRUDict."""

import pytest

from acp.core.lru_cache import LRUDict


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestLRUDict:
    def test_basic_set_get(self):
        cache = LRUDict(max_size=10)
        cache["key1"] = "value1"
        assert cache["key1"] == "value1"
        assert "key1" in cache

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            LRUDict(max_size=0)

    def test_eviction_on_overflow(self):
        """Should evict oldest items when exceeding max_size."""
        evicted = []
        cache = LRUDict(max_size=3, on_evict=lambda k, v: evicted.append(k))
        for key in "abcd":
            cache[key] = key.upper()
        assert len(cache) == 3
        assert "a" not in cache
        assert evicted == ["a"]

    def test_access_updates_lru_order(self):
        cache = LRUDict(max_size=3)
        cache["a"] = 1
        cache["b"] = 2
        cache["c"] = 3
        _ = cache["a"]
        cache["d"] = 4
        assert "a" in cache
        assert "b" not in cache

    def test_get_does_not_touch(self):
        cache = LRUDict(max_size=2)
        cache["a"] = 1
        cache["b"] = 2
        assert cache.get("a") == 1
        cache["c"] = 3
        assert "a" not in cache
        assert cache.get("missing", 0) == 0

    def test_replacing_value_notifies_old(self):
        evicted = []
        cache = LRUDict(max_size=2, on_evict=lambda k, v: evicted.append(v))
        cache["a"] = "old"
        cache["a"] = "new"
        assert evicted == ["old"]
        assert cache["a"] == "new"

    def test_pop_skips_callback(self):
        evicted = []
        cache = LRUDict(max_size=2, on_evict=lambda k, v: evicted.append(k))
        cache["a"] = 1
        assert cache.pop("a") == 1
        assert evicted == []

    def test_del_and_clear_notify(self):
        evicted = []
        cache = LRUDict(max_size=5, on_evict=lambda k, v: evicted.append(k))
        cache["a"] = 1
        cache["b"] = 2
        cache["c"] = 3
        del cache["a"]
        cache.clear()
        assert evicted == ["a", "b", "c"]
        assert len(cache) == 0


class TestLRUDictAge:
    def test_evict_stale(self):
        clock = FakeClock()
        evicted = []
        cache = LRUDict(max_size=5, max_age=10, on_evict=lambda k, v: evicted.append(k), clock=clock)
        cache["a"] = 1
        clock.now = 5
        cache["b"] = 2
        clock.now = 12
        assert cache.evict_stale() == 1
        assert evicted == ["a"]
        assert "b" in cache

    def test_access_refreshes_age(self):
        clock = FakeClock()
        cache = LRUDict(max_size=5, max_age=10, clock=clock)
        cache["a"] = 1
        clock.now = 8
        _ = cache["a"]
        clock.now = 15
        assert cache.evict_stale() == 0

    def test_no_max_age_never_stale(self):
        cache = LRUDict(max_size=5)
        cache["a"] = 1
        assert cache.evict_stale() == 0

    def test_stats(self):
        cache = LRUDict(max_size=4, max_age=30)
        cache["a"] = 1
        assert cache.stats() == {"size": 1, "max_size": 4, "max_age": 30, "utilization": 0.25}
