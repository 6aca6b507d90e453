"""Per-category request budgets for the remote market data API."""
from __future__ import annotations

import asyncio
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Iterable, Mapping

from loguru import logger

DEFAULT_CATEGORY = "standard"


@dataclass(frozen=True, slots=True)
class RateBudget:
    """At most ``capacity`` calls in any window of ``interval`` seconds."""

    category: str
    capacity: int
    interval: float = 1.0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValueError(f"capacity for {self.category!r} must be at least 1")
        if self.interval <= 0.0:
            raise ValueError(f"interval for {self.category!r} must be positive")

    @property
    def rate(self) -> float:
        """Sustained calls per second."""

        return self.capacity / self.interval


DEFAULT_BUDGETS: tuple[RateBudget, ...] = (
    RateBudget("quote", capacity=1, interval=1.0),
    RateBudget("historical", capacity=3, interval=1.0),
    RateBudget("orders", capacity=10, interval=1.0),
    RateBudget("standard", capacity=10, interval=1.0),
)


@dataclass(frozen=True, slots=True)
class CategoryStats:
    """Point-in-time view of one category's budget."""

    category: str
    capacity: int
    interval: float
    issued_in_window: int
    total_issued: int
    total_wait: float
    next_available: float

    @property
    def is_at_limit(self) -> bool:
        return self.issued_in_window >= self.capacity

    @property
    def remaining_capacity(self) -> int:
        return max(self.capacity - self.issued_in_window, 0)


class _Bucket:
    """Permits that return to the bucket exactly one interval after they were taken.

    Admission times are reserved under a lock in arrival order and the
    caller sleeps outside of it, so waiters are admitted first come, first
    served and no rolling window ever holds more than ``capacity`` calls.
    """

    __slots__ = ("budget", "_admitted", "_lock", "total_issued", "total_wait")

    def __init__(self, budget: RateBudget) -> None:
        self.budget = budget
        self._admitted: Deque[float] = deque()
        self._lock = threading.Lock()
        self.total_issued = 0
        self.total_wait = 0.0

    def _prune(self, now: float) -> None:
        horizon = now - self.budget.interval
        while self._admitted and self._admitted[0] <= horizon:
            self._admitted.popleft()

    def _next_slot(self, now: float) -> float:
        if len(self._admitted) < self.budget.capacity:
            return now
        return max(now, self._admitted[-self.budget.capacity] + self.budget.interval)

    def reserve(self, now: float) -> float:
        """Book the earliest admissible slot and return the wait until it."""

        with self._lock:
            self._prune(now)
            slot = self._next_slot(now)
            self._admitted.append(slot)
            wait = slot - now
            self.total_issued += 1
            self.total_wait += wait
            return wait

    def delay(self, now: float) -> float:
        with self._lock:
            self._prune(now)
            return self._next_slot(now) - now

    def stats(self, now: float) -> CategoryStats:
        with self._lock:
            self._prune(now)
            in_window = sum(1 for admitted in self._admitted if admitted <= now)
            return CategoryStats(
                category=self.budget.category,
                capacity=self.budget.capacity,
                interval=self.budget.interval,
                issued_in_window=in_window,
                total_issued=self.total_issued,
                total_wait=self.total_wait,
                next_available=self._next_slot(now),
            )


class RateLimiter:
    """Token buckets keyed by endpoint category.

    Categories without a configured budget get their own bucket with the
    slowest configured budget. ``acquire`` never fails, it only delays.
    """

    def __init__(
        self,
        budgets: Iterable[RateBudget] | Mapping[str, RateBudget] = DEFAULT_BUDGETS,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        configured = list(budgets.values()) if isinstance(budgets, Mapping) else list(budgets)
        if not configured:
            raise ValueError("at least one rate budget is required")

        self.enabled = enabled
        self._clock = clock
        self._sleep = sleep
        self._buckets: Dict[str, _Bucket] = {budget.category: _Bucket(budget) for budget in configured}
        self._fallback = min(configured, key=lambda budget: budget.rate)
        self._registry_lock = threading.Lock()

    def _bucket(self, category: str) -> _Bucket:
        bucket = self._buckets.get(category)
        if bucket is not None:
            return bucket
        with self._registry_lock:
            bucket = self._buckets.get(category)
            if bucket is None:
                logger.debug(
                    "No rate budget for category {category}; using {fallback} limits",
                    category=category,
                    fallback=self._fallback.category,
                )
                budget = RateBudget(category, self._fallback.capacity, self._fallback.interval)
                bucket = self._buckets[category] = _Bucket(budget)
            return bucket

    def budget_for(self, category: str) -> RateBudget:
        return self._bucket(category).budget

    async def acquire(self, category: str = DEFAULT_CATEGORY) -> None:
        """Suspend the calling task until a permit for ``category`` is available."""

        if not self.enabled:
            return
        wait = self._bucket(category).reserve(self._clock())
        if wait > 0.0:
            logger.debug("Rate limiting {category}: waiting {wait:.3f}s", category=category, wait=wait)
            await self._sleep(wait)

    def can_acquire_now(self, category: str = DEFAULT_CATEGORY) -> bool:
        return self.delay_for(category) <= 0.0

    def delay_for(self, category: str = DEFAULT_CATEGORY) -> float:
        """Seconds an ``acquire`` issued now would wait; nothing is consumed."""

        if not self.enabled:
            return 0.0
        return self._bucket(category).delay(self._clock())

    def stats(self) -> Dict[str, CategoryStats]:
        now = self._clock()
        return {category: bucket.stats(now) for category, bucket in list(self._buckets.items())}
