"""Chunk planning, rate limiting, retries and caching for historical downloads."""

from market_history.fetch.cache import ResponseCache, fingerprint
from market_history.fetch.engine import ChunkFailure, FetchOptions, FetchResult, FetchState, RetrievalEngine
from market_history.fetch.planner import DEFAULT_MAX_SPANS, ChunkPlanner, spans_for_candle_limit
from market_history.fetch.rate_limiter import DEFAULT_BUDGETS, RateBudget, RateLimiter
from market_history.fetch.retry import RetryExecutor, RetryPolicy

__all__ = [
    "ChunkFailure",
    "ChunkPlanner",
    "DEFAULT_BUDGETS",
    "DEFAULT_MAX_SPANS",
    "FetchOptions",
    "FetchResult",
    "FetchState",
    "RateBudget",
    "RateLimiter",
    "ResponseCache",
    "RetrievalEngine",
    "RetryExecutor",
    "RetryPolicy",
    "fingerprint",
    "spans_for_candle_limit",
]
