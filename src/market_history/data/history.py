"""Helpers for assembling a retrieval engine and fetching candles with it."""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Sequence

from market_history.config.settings import AppSettings
from market_history.data.binance_client import BinanceKlinesTransport, BinanceRESTClient
from market_history.data.models import Granularity, TimeRangeRequest
from market_history.data.transport import Transport
from market_history.fetch.cache import ResponseCache
from market_history.fetch.engine import FetchOptions, FetchResult, RetrievalEngine
from market_history.fetch.planner import ChunkPlanner, spans_for_candle_limit
from market_history.fetch.rate_limiter import RateLimiter
from market_history.fetch.retry import RetryExecutor
from market_history.utils import ensure_utc


def build_engine(
    transport: Transport,
    settings: AppSettings,
    *,
    planner: ChunkPlanner | None = None,
) -> RetrievalEngine:
    """Wire limiter, retry executor and cache from settings around ``transport``."""

    cache = None
    if settings.cache.enabled:
        cache = ResponseCache(max_entries=settings.cache.max_entries, default_ttl=settings.cache.ttl_seconds)

    return RetrievalEngine(
        transport,
        planner=planner,
        rate_limiter=RateLimiter(settings.rate_limits.to_budgets(), enabled=settings.rate_limits.enabled),
        retry_executor=RetryExecutor(settings.retry.to_policy()),
        cache=cache,
        category=settings.rate_limits.default_category,
    )


def binance_planner(settings: AppSettings) -> ChunkPlanner:
    return ChunkPlanner(spans_for_candle_limit(settings.binance.candles_per_request))


def fetch_history(
    settings: AppSettings,
    *,
    start: datetime,
    end: datetime,
    symbol: str | None = None,
    granularity: Granularity | str | None = None,
    continue_on_error: bool | None = None,
) -> FetchResult:
    """Retrieve one symbol's candles from Binance between two timestamps (inclusive)."""

    request = TimeRangeRequest(
        instrument=symbol or settings.fetch.symbol,
        start=ensure_utc(start),
        end=ensure_utc(end),
        granularity=Granularity.parse(granularity or settings.fetch.granularity),
        continuous=settings.fetch.continuous,
        include_oi=settings.fetch.include_oi,
    )
    options = FetchOptions(
        continue_on_error=settings.fetch.continue_on_error if continue_on_error is None else continue_on_error,
        use_cache=settings.fetch.use_cache,
    )

    with BinanceRESTClient(
        settings.binance.api_key,
        settings.binance.api_secret,
        base_url=settings.binance.base_url,
        futures_url=settings.binance.futures_url,
        market=settings.binance.market,  # type: ignore[arg-type]
        request_timeout=settings.binance.request_timeout,
    ) as client:
        transport = BinanceKlinesTransport(client, limit=settings.binance.candles_per_request)
        engine = build_engine(transport, settings, planner=binance_planner(settings))
        return asyncio.run(engine.fetch(request, options))


__all__: Sequence[str] = ("binance_planner", "build_engine", "fetch_history")
