"""Binance kline transport built on the python-binance REST client."""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence

import requests
from binance import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException
from loguru import logger

from market_history.data.errors import (
    ClientError,
    DecodeError,
    MarketHistoryError,
    TransportError,
    error_from_status,
    parse_retry_after,
)
from market_history.data.models import Candle, Chunk, Granularity
from market_history.utils import from_epoch_millis, to_epoch_millis

MarketType = Literal["spot", "futures"]

MAX_CANDLES_PER_REQUEST = 1000

BINANCE_INTERVALS: Mapping[Granularity, str] = {
    Granularity.MINUTE: "1m",
    Granularity.THREE_MINUTE: "3m",
    Granularity.FIVE_MINUTE: "5m",
    Granularity.FIFTEEN_MINUTE: "15m",
    Granularity.THIRTY_MINUTE: "30m",
    Granularity.SIXTY_MINUTE: "1h",
    Granularity.DAY: "1d",
}

# Binance error codes for rejected keys, signatures and permissions.
_AUTH_CODES = frozenset({-1002, -1022, -2014, -2015})


class BinanceRESTClient:
    """Provide a minimal interface for fetching klines with resource cleanup."""

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        *,
        base_url: str | None = None,
        futures_url: str | None = None,
        market: MarketType = "spot",
        request_timeout: int = 20,
        requests_params: Optional[Dict[str, Any]] = None,
    ) -> None:
        params = dict(requests_params or {})
        params.setdefault("timeout", request_timeout)

        self._market: MarketType = market
        self._client = Client(api_key, api_secret, requests_params=params, ping=False)

        if market == "spot":
            if base_url:
                self._client.API_URL = base_url
            self._fetch_klines: Callable[..., List[List[Any]]] = self._client.get_klines
        else:
            endpoint = futures_url or base_url
            if endpoint:
                self._client.FUTURES_URL = endpoint
            self._fetch_klines = self._client.futures_klines

    def __enter__(self) -> "BinanceRESTClient":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying HTTP session."""

        if hasattr(self._client, "session") and self._client.session:
            self._client.session.close()

    def get_klines(
        self,
        *,
        symbol: str,
        interval: str,
        startTime: int,
        endTime: int,
        limit: int,
    ) -> List[List[Any]]:
        """Delegate to python-binance while keeping typing explicit."""

        return self._fetch_klines(  # type: ignore[no-any-return]
            symbol=symbol,
            interval=interval,
            startTime=startTime,
            endTime=endTime,
            limit=limit,
        )


def decode_kline(raw: Sequence[Any]) -> Candle:
    """Turn one raw kline row into a :class:`Candle`; Binance reports no open interest."""

    try:
        return Candle(
            timestamp=from_epoch_millis(raw[0]),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
            volume=float(raw[5]),
        )
    except (IndexError, TypeError, ValueError) as exc:
        raise DecodeError(f"malformed kline row: {raw!r}") from exc


def error_from_binance(exc: BinanceAPIException) -> MarketHistoryError:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or {}
    retry_after = parse_retry_after(headers.get("Retry-After"))
    message = f"{exc.code}: {exc.message}"
    if exc.code in _AUTH_CODES:
        return error_from_status(401, message)
    return error_from_status(int(exc.status_code), message, retry_after=retry_after)


class BinanceKlinesTransport:
    """Serve chunk calls from the Binance kline endpoint.

    Binance treats ``startTime``/``endTime`` as inclusive bounds on candle
    open times, matching the planner's chunk boundaries. The blocking client
    runs in a worker thread so waiting on the network does not stall other
    fetches.
    """

    def __init__(self, client: BinanceRESTClient, *, limit: int = MAX_CANDLES_PER_REQUEST) -> None:
        if not 1 <= limit <= MAX_CANDLES_PER_REQUEST:
            raise ValueError(f"limit must be between 1 and {MAX_CANDLES_PER_REQUEST}")
        self._client = client
        self._limit = limit

    @property
    def limit(self) -> int:
        return self._limit

    async def call(self, chunk: Chunk) -> List[Candle]:
        interval = BINANCE_INTERVALS.get(chunk.granularity)
        if interval is None:
            raise ClientError(400, f"Binance has no {chunk.granularity.value} klines")

        try:
            raw = await asyncio.to_thread(
                self._client.get_klines,
                symbol=str(chunk.instrument),
                interval=interval,
                startTime=to_epoch_millis(chunk.start),
                endTime=to_epoch_millis(chunk.end),
                limit=self._limit,
            )
        except BinanceAPIException as exc:
            raise error_from_binance(exc) from exc
        except BinanceRequestException as exc:
            raise DecodeError(str(exc)) from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(str(exc)) from exc

        if not isinstance(raw, list):
            raise DecodeError(f"unexpected kline payload type {type(raw).__name__}")

        candles = [decode_kline(row) for row in raw]
        logger.debug(
            "Fetched {count} klines for {chunk}",
            count=len(candles),
            chunk=chunk.describe(),
        )
        return candles
