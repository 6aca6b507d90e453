"""Tests for the TTL response cache."""
from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from market_history.data.models import Granularity, TimeRangeRequest
from market_history.fetch.cache import ResponseCache, fingerprint


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = ResponseCache(default_ttl=10.0, clock=clock)
    cache.set("a", [1, 2])

    clock.now = 9.9
    assert cache.get("a") == [1, 2]
    clock.now = 10.0
    assert cache.get("a") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    clock = FakeClock()
    cache = ResponseCache(default_ttl=10.0, clock=clock)
    cache.set("short", "x", ttl=1.0)
    cache.set("long", "y")

    clock.now = 5.0
    assert cache.get("short") is None
    assert cache.get("long") == "y"


def test_empty_values_are_distinguishable_from_misses() -> None:
    cache = ResponseCache()
    cache.set("empty", ())
    assert cache.get("empty") == ()
    assert cache.get("missing") is None


def test_capacity_pressure_evicts_expired_then_oldest() -> None:
    clock = FakeClock()
    cache = ResponseCache(max_entries=3, default_ttl=100.0, clock=clock)
    cache.set("stale", 0, ttl=1.0)
    cache.set("a", 1)
    cache.set("b", 2)
    clock.now = 2.0
    cache.set("c", 3)

    assert len(cache) == 3
    assert cache.get("stale") is None
    assert cache.get("a") == 1

    cache.set("d", 4)
    assert cache.get("a") is None
    assert [cache.get(key) for key in ("b", "c", "d")] == [2, 3, 4]
    assert cache.stats().evictions == 2


def test_rewriting_a_key_counts_as_a_fresh_insertion() -> None:
    cache = ResponseCache(max_entries=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 10)
    cache.set("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 10


def test_invalidate_clear_and_stats() -> None:
    cache = ResponseCache()
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.invalidate("a")
    assert not cache.invalidate("a")
    cache.get("b")
    cache.get("a")

    stats = cache.stats()
    assert (stats.size, stats.hits, stats.misses) == (1, 1, 1)

    cache.clear()
    assert len(cache) == 0


def test_concurrent_writers_respect_capacity() -> None:
    cache = ResponseCache(max_entries=50)

    def writer(offset: int) -> None:
        for i in range(200):
            cache.set((offset, i), i)
            cache.get((offset, i - 1))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 50


def test_fingerprint_distinguishes_every_request_field() -> None:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 2, 1, tzinfo=timezone.utc)
    base = TimeRangeRequest(1, start, end, Granularity.DAY)
    variants = [
        base,
        TimeRangeRequest(2, start, end, Granularity.DAY),
        TimeRangeRequest(1, start, end, Granularity.SIXTY_MINUTE),
        TimeRangeRequest(1, start, end.replace(day=2), Granularity.DAY),
        TimeRangeRequest(1, start, end, Granularity.DAY, continuous=True),
        TimeRangeRequest(1, start, end, Granularity.DAY, include_oi=True),
    ]

    assert len({fingerprint(request) for request in variants}) == len(variants)
    assert fingerprint(base) == fingerprint(TimeRangeRequest(1, start, end, "day"))


def test_rejects_invalid_configuration() -> None:
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
    with pytest.raises(ValueError):
        ResponseCache(default_ttl=0.0)
