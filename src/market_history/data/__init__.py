"""Data access layer."""

from market_history.data.binance_client import BinanceKlinesTransport, BinanceRESTClient
from market_history.data.errors import (
    AuthError,
    ClientError,
    DecodeError,
    FetchCancelledError,
    MarketHistoryError,
    RateLimitError,
    ServerError,
    TransportError,
)
from market_history.data.models import Candle, Chunk, Granularity, Series, TimeRangeRequest
from market_history.data.transport import Transport

__all__ = [
	"AuthError",
	"BinanceKlinesTransport",
	"BinanceRESTClient",
	"Candle",
	"Chunk",
	"ClientError",
	"DecodeError",
	"FetchCancelledError",
	"Granularity",
	"MarketHistoryError",
	"RateLimitError",
	"Series",
	"ServerError",
	"TimeRangeRequest",
	"Transport",
	"TransportError",
]
