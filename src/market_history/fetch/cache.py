"""Bounded in-memory TTL cache for idempotent read results."""
from __future__ import annotations

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from loguru import logger

from market_history.data.models import TimeRangeRequest


def fingerprint(request: TimeRangeRequest) -> str:
    """Cache key covering everything that changes what the provider returns."""

    return "|".join(
        (
            str(request.instrument),
            request.granularity.value,
            request.start.isoformat(),
            request.end.isoformat(),
            "c1" if request.continuous else "c0",
            "oi1" if request.include_oi else "oi0",
        )
    )


@dataclass(slots=True)
class CacheEntry:
    key: Hashable
    value: Any
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.inserted_at >= self.ttl


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    max_entries: int
    hits: int
    misses: int
    evictions: int


class ResponseCache:
    """Thread-safe key/value store with lazy expiry.

    Expired entries are dropped when read. When a write pushes the cache
    past ``max_entries``, expired entries are swept first and then the
    oldest insertions are evicted.
    """

    def __init__(
        self,
        *,
        max_entries: int = 512,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if default_ttl <= 0.0:
            raise ValueError("default_ttl must be positive")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0.0:
            return
        with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(key=key, value=value, inserted_at=now, ttl=ttl)
            if len(self._entries) > self.max_entries:
                self._sweep(now)

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                max_entries=self.max_entries,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        evicted = len(expired)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        self._evictions += evicted
        logger.debug("Cache sweep evicted {count} entries ({size} left)", count=evicted, size=len(self._entries))
