"""Tests for the error taxonomy and status mapping."""
from __future__ import annotations

import asyncio

import pytest

from market_history.data.errors import (
    AuthError,
    ClientError,
    DecodeError,
    RateLimitError,
    ServerError,
    TransportError,
    error_from_status,
    is_retryable,
    parse_retry_after,
)


@pytest.mark.parametrize(
    ("status", "error_type", "expected"),
    [
        (401, None, AuthError),
        (403, None, AuthError),
        (400, "TokenException", AuthError),
        (429, None, RateLimitError),
        (418, None, RateLimitError),
        (500, None, ServerError),
        (503, None, ServerError),
        (400, "NetworkException", ServerError),
        (400, None, ClientError),
        (404, "InputException", ClientError),
    ],
)
def test_error_from_status(status: int, error_type: str | None, expected: type) -> None:
    assert type(error_from_status(status, "boom", error_type=error_type)) is expected


def test_rate_limit_error_keeps_retry_after() -> None:
    error = error_from_status(429, retry_after=3.0)

    assert isinstance(error, RateLimitError)
    assert error.retry_after == 3.0


def test_client_error_exposes_status_and_message() -> None:
    error = error_from_status(400, "invalid interval")

    assert error.status == 400
    assert error.message == "invalid interval"
    assert "invalid interval" in str(error)


@pytest.mark.parametrize(
    ("error", "retryable"),
    [
        (TransportError("reset"), True),
        (RateLimitError(), True),
        (ServerError(502), True),
        (ClientError(400, "bad"), False),
        (AuthError("expired"), False),
        (DecodeError("garbage"), False),
        (ConnectionResetError(), True),
        (asyncio.TimeoutError(), True),
        (KeyError("x"), False),
    ],
)
def test_is_retryable(error: BaseException, retryable: bool) -> None:
    assert is_retryable(error) is retryable


@pytest.mark.parametrize(
    ("header", "expected"),
    [(None, None), ("2", 2.0), ("0.5", 0.5), ("-1", 0.0), ("Wed, 21 Oct 2015 07:28:00 GMT", None)],
)
def test_parse_retry_after(header: str | None, expected: float | None) -> None:
    assert parse_retry_after(header) == expected
