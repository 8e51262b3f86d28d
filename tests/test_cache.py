from __future__ import annotations

import pytest

from cryptoresearch.models.search import SearchSource
from cryptoresearch.services.cache import CacheService


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(clock=None, **kwargs) -> CacheService:
    kwargs.setdefault("default_ttl_seconds", 60)
    kwargs.setdefault("max_entries", 10)
    return CacheService(clock=clock or FakeClock(), **kwargs)


def test_get_returns_value_until_ttl_expires():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("k", {"v": 1})

    clock.now += 60
    assert cache.get("k") == {"v": 1}

    clock.now += 1
    assert cache.get("k") is None
    assert "k" not in cache.keys()


def test_per_entry_ttl_overrides_default():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("short", 1, ttl=5)
    cache.set("long", 2)

    clock.now += 10

    assert not cache.has("short")
    assert cache.has("long")


def test_eviction_removes_least_used_entry():
    cache = _cache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")

    cache.set("c", 3)

    assert sorted(cache.keys()) == ["a", "c"]


def test_overwriting_existing_key_does_not_evict():
    cache = _cache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)

    cache.set("a", 10)

    assert sorted(cache.keys()) == ["a", "b"]
    assert cache.get("a") == 10


def test_stats_track_hits_misses_and_size():
    cache = _cache()
    cache.set("a", "xyz")
    cache.get("a")
    cache.get("a")
    cache.get("missing")

    stats = cache.stats()

    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.total_entries == 1
    assert stats.total_size == len('"xyz"')


def test_search_key_normalizes_query():
    cache = _cache()
    key = cache.search_key("  Bitcoin Price ")

    assert key == cache.search_key("bitcoin price")
    assert key.startswith("search_")
    assert len(key) == len("search_") + 16
    assert cache.search_key("bitcoin price", 5) == f"{key}:5"


def test_search_results_round_trip_through_cache():
    cache = _cache()
    sources = [SearchSource(title="t", url="https://a.io", content="c")]

    cache.set_search_results("Query", sources, max_results=3)

    assert cache.has_search_results("query", max_results=3)
    assert not cache.has_search_results("query")
    assert cache.get_search_results("QUERY", max_results=3) == sources


def test_sweep_and_batch_helpers():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set_many([("a", 1, 5), ("b", 2, None)])
    clock.now += 10

    assert cache.sweep() == 1
    assert cache.get_many(["a", "b"]) == {"a": None, "b": 2}
    assert cache.delete("b")
    assert not cache.delete("b")


@pytest.mark.asyncio
async def test_background_sweep_starts_and_stops():
    cache = _cache(sweep_interval_seconds=3600)
    cache.start()
    assert cache._sweep_task is not None

    await cache.stop()

    assert cache._sweep_task is None


def test_explicit_zero_ttl_is_not_the_default():
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("zero", 1, ttl=0)

    clock.now += 1

    assert not cache.has("zero")
