"""Orchestrate chunked historical downloads over a shared limiter and cache."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Dict, Iterable, List, Sequence, TypeVar

from loguru import logger

from market_history.data.errors import AuthError, FetchCancelledError
from market_history.data.models import Candle, Chunk, Series, TimeRangeRequest
from market_history.data.transport import Transport
from market_history.fetch.cache import ResponseCache, fingerprint
from market_history.fetch.planner import ChunkPlanner
from market_history.fetch.rate_limiter import RateLimiter
from market_history.fetch.retry import RetryExecutor

HISTORICAL_CATEGORY = "historical"

T = TypeVar("T")


class FetchState(str, Enum):
    COMPLETE = "complete"
    EARLY_STOP = "early_stop"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class FetchOptions:
    """Per-call knobs for :meth:`RetrievalEngine.fetch`.

    ``deadline`` is measured in seconds from the start of the fetch.
    """

    continue_on_error: bool = False
    use_cache: bool = True
    deadline: float | None = None
    cancel_event: asyncio.Event | None = None


@dataclass(frozen=True, slots=True)
class ChunkFailure:
    chunk: Chunk
    error: BaseException


@dataclass(slots=True)
class FetchResult:
    series: Series
    state: FetchState
    failures: List[ChunkFailure] = field(default_factory=list)
    chunks_planned: int = 0
    chunks_requested: int = 0
    cache_hits: int = 0
    coalesced: int = 0

    @property
    def complete(self) -> bool:
        """True when the series covers every chunk the provider has data for."""

        return not self.failures and self.state in (FetchState.COMPLETE, FetchState.EARLY_STOP)

    @property
    def errors(self) -> List[BaseException]:
        return [failure.error for failure in self.failures]


class _ChunkSource(str, Enum):
    NETWORK = "network"
    CACHE = "cache"
    SHARED = "shared"


class _InFlight:
    __slots__ = ("task", "waiters")

    def __init__(self, task: "asyncio.Future[List[Candle]]") -> None:
        self.task = task
        self.waiters = 0


class RetrievalEngine:
    """Fetch arbitrarily long ranges as one gap-free, duplicate-free series.

    Chunks of a single fetch are issued strictly one after another, newest
    first: an empty chunk proves the instrument has no older data and ends
    the fetch. Different fetches run concurrently and share the limiter,
    the cache and any identical chunk already in flight.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        planner: ChunkPlanner | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        cache: ResponseCache | None = None,
        category: str = HISTORICAL_CATEGORY,
        cache_ttl: float | None = None,
    ) -> None:
        self._transport = transport
        self._planner = planner or ChunkPlanner()
        self._rate_limiter = rate_limiter or RateLimiter()
        self._retry = retry_executor or RetryExecutor()
        self._cache = cache
        self._category = category
        self._cache_ttl = cache_ttl
        self._inflight: Dict[str, _InFlight] = {}

    @property
    def planner(self) -> ChunkPlanner:
        return self._planner

    @property
    def category(self) -> str:
        """Rate limit category charged for every transport attempt."""

        return self._category

    def plan(self, request: TimeRangeRequest) -> List[Chunk]:
        """Expose the chunk plan for callers that drive the calls themselves."""

        return self._planner.plan(request)

    async def fetch(self, request: TimeRangeRequest, options: FetchOptions | None = None) -> FetchResult:
        """Download ``request`` chunk by chunk.

        In strict mode the first fatal chunk error is re-raised unchanged. With
        ``continue_on_error`` failures are collected on the result instead,
        except :class:`AuthError`, which always propagates. Cancellation and
        deadlines return the partial series with a :class:`FetchCancelledError`
        recorded against the interrupted chunk.
        """

        options = options or FetchOptions()
        chunks = self._planner.plan(request)
        result = FetchResult(series=Series(), state=FetchState.COMPLETE, chunks_planned=len(chunks))
        if not chunks:
            return result

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + options.deadline if options.deadline is not None else None
        use_cache = options.use_cache and self._cache is not None
        batches: List[Sequence[Candle]] = []

        for chunk in chunks:
            if self._stop_requested(options.cancel_event, deadline_at, loop):
                result.state = FetchState.CANCELLED
                cancelled = FetchCancelledError(f"fetch cancelled before {chunk.describe()}")
                result.failures.append(ChunkFailure(chunk, cancelled))
                break

            try:
                candles, source = await self._guarded(
                    self._load_chunk(chunk, use_cache), options.cancel_event, deadline_at, chunk
                )
            except FetchCancelledError as error:
                result.state = FetchState.CANCELLED
                result.failures.append(ChunkFailure(chunk, error))
                break
            except Exception as error:
                if isinstance(error, AuthError) or not options.continue_on_error:
                    logger.error(
                        "Aborting fetch of {instrument}: chunk {chunk} failed with {error!r}",
                        instrument=request.instrument,
                        chunk=chunk.describe(),
                        error=error,
                    )
                    raise
                logger.warning("Skipping chunk {chunk}: {error!r}", chunk=chunk.describe(), error=error)
                result.failures.append(ChunkFailure(chunk, error))
                continue

            if source is _ChunkSource.CACHE:
                result.cache_hits += 1
            elif source is _ChunkSource.SHARED:
                result.coalesced += 1
            else:
                result.chunks_requested += 1

            if not candles:
                logger.debug(
                    "Chunk {chunk} is empty; no older data for {instrument}",
                    chunk=chunk.describe(),
                    instrument=request.instrument,
                )
                result.state = FetchState.EARLY_STOP
                break
            batches.append(candles)

        result.series = Series.merge(batches)
        logger.info(
            "Fetched {count} candles for {instrument} ({granularity}): {state}, {requested}/{planned} chunks requested, "
            "{hits} from cache, {failed} failed",
            count=len(result.series),
            instrument=request.instrument,
            granularity=request.granularity.value,
            state=result.state.value,
            requested=result.chunks_requested,
            planned=result.chunks_planned,
            hits=result.cache_hits + result.coalesced,
            failed=len(result.failures),
        )
        return result

    async def fetch_many(
        self,
        requests: Iterable[TimeRangeRequest],
        options: FetchOptions | None = None,
    ) -> List[FetchResult]:
        """Run several fetches concurrently.

        The first failure propagates after the remaining fetches have been
        cancelled and awaited.
        """

        tasks = [asyncio.ensure_future(self.fetch(request, options)) for request in requests]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    @staticmethod
    def _stop_requested(
        cancel_event: asyncio.Event | None,
        deadline_at: float | None,
        loop: asyncio.AbstractEventLoop,
    ) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline_at is not None and loop.time() >= deadline_at

    async def _guarded(
        self,
        work: Awaitable[T],
        cancel_event: asyncio.Event | None,
        deadline_at: float | None,
        chunk: Chunk,
    ) -> T:
        """Await ``work`` unless the fetch is cancelled or runs out of time first."""

        if cancel_event is None and deadline_at is None:
            return await work

        task = asyncio.ensure_future(work)
        waiters = {task}
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        if cancel_waiter is not None:
            waiters.add(cancel_waiter)
        timeout = None if deadline_at is None else max(0.0, deadline_at - asyncio.get_running_loop().time())

        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        reason = "cancelled" if cancel_event is not None and cancel_event.is_set() else "deadline exceeded"
        raise FetchCancelledError(f"fetch {reason} while loading {chunk.describe()}")

    async def _load_chunk(self, chunk: Chunk, use_cache: bool) -> tuple[List[Candle], _ChunkSource]:
        if not use_cache or self._cache is None:
            return await self._request(chunk), _ChunkSource.NETWORK

        key = fingerprint(chunk)
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached), _ChunkSource.CACHE

        flight = self._inflight.get(key)
        source = _ChunkSource.SHARED
        if flight is None:
            flight = self._start_flight(key, chunk)
            source = _ChunkSource.NETWORK

        flight.waiters += 1
        try:
            candles = await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters <= 1:
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1
        return list(candles), source

    def _start_flight(self, key: str, chunk: Chunk) -> _InFlight:
        flight = _InFlight(asyncio.ensure_future(self._request_and_store(key, chunk)))
        self._inflight[key] = flight

        def _forget(_: "asyncio.Future[List[Candle]]") -> None:
            if self._inflight.get(key) is flight:
                del self._inflight[key]

        flight.task.add_done_callback(_forget)
        return flight

    async def _request_and_store(self, key: str, chunk: Chunk) -> List[Candle]:
        candles = await self._request(chunk)
        if self._cache is not None:
            # Empty results are cached too so a repeated fetch stops at the same chunk.
            self._cache.set(key, tuple(candles), self._cache_ttl)
        return candles

    async def _request(self, chunk: Chunk) -> List[Candle]:
        async def _attempt() -> List[Candle]:
            await self._rate_limiter.acquire(self._category)
            return list(await self._transport.call(chunk))

        return await self._retry.run(_attempt, description=f"chunk {chunk.describe()}")
