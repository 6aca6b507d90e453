"""Error taxonomy shared by transports, the retry executor and the retrieval engine."""
from __future__ import annotations

import asyncio


class MarketHistoryError(Exception):
    """Base class for every failure raised by the history layer."""

    retryable: bool = False


class TransportError(MarketHistoryError):
    """The request never produced a response (connection reset, timeout, DNS...)."""

    retryable = True


class RateLimitError(MarketHistoryError):
    """The provider throttled the call, optionally telling us how long to back off."""

    retryable = True

    def __init__(self, message: str = "rate limit exceeded", *, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ServerError(MarketHistoryError):
    """5xx-class failure on the provider side."""

    retryable = True

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(f"server error {status}: {message}" if message else f"server error {status}")
        self.status = status


class ClientError(MarketHistoryError):
    """The provider rejected the request itself; repeating it will not help."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"client error {status}: {message}")
        self.status = status
        self.message = message


class AuthError(MarketHistoryError):
    """Credentials or session are no longer valid; the caller must re-authenticate."""


class DecodeError(MarketHistoryError):
    """The response arrived but could not be turned into candles."""


class FetchCancelledError(MarketHistoryError):
    """A fetch stopped early because its deadline passed or it was cancelled."""


def is_retryable(error: BaseException) -> bool:
    """Classify an exception raised by a single transport attempt."""

    if isinstance(error, MarketHistoryError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError))


_AUTH_ERROR_TYPES = frozenset({"TokenException", "AuthenticationException", "PermissionException"})


def error_from_status(
    status: int,
    message: str = "",
    *,
    retry_after: float | None = None,
    error_type: str | None = None,
) -> MarketHistoryError:
    """Map an HTTP status (and optional provider error type) onto the taxonomy."""

    if error_type in _AUTH_ERROR_TYPES or status in (401, 403):
        return AuthError(message or f"authentication rejected ({status})")
    if status in (418, 429):
        return RateLimitError(message or f"rate limited ({status})", retry_after=retry_after)
    if error_type == "NetworkException" or status >= 500:
        return ServerError(status, message)
    return ClientError(status, message)


def parse_retry_after(value: str | None) -> float | None:
    """Read a ``Retry-After`` header expressed in seconds; dates are ignored."""

    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)
