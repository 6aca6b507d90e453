"""Tests for the retry executor."""
from __future__ import annotations

import asyncio
import random

import pytest

from market_history.data.errors import (
    AuthError,
    ClientError,
    DecodeError,
    RateLimitError,
    ServerError,
    TransportError,
)
from market_history.fetch.retry import RetryExecutor, RetryPolicy


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FlakyOperation:
    """Raise the scripted errors in order, then return ``result``."""

    def __init__(self, errors: list[BaseException], result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def make_executor(policy: RetryPolicy) -> tuple[RetryExecutor, RecordingSleep]:
    sleep = RecordingSleep()
    return RetryExecutor(policy, sleep=sleep, rng=random.Random(7)), sleep


def test_transient_errors_are_retried_until_success() -> None:
    executor, sleep = make_executor(RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=2.0, jitter=(0.0, 0.0)))
    operation = FlakyOperation([TransportError("reset"), ServerError(503), RateLimitError()])

    assert asyncio.run(executor.run(operation)) == "ok"
    assert operation.calls == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


def test_gives_up_after_max_attempts_with_last_error() -> None:
    executor, sleep = make_executor(RetryPolicy(max_attempts=3, base_delay=0.1, jitter=(0.0, 0.0)))
    operation = FlakyOperation([ServerError(500), ServerError(502), ServerError(504), ServerError(500)])

    with pytest.raises(ServerError) as excinfo:
        asyncio.run(executor.run(operation))

    assert excinfo.value.status == 504
    assert operation.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.parametrize("error", [AuthError("expired"), ClientError(400, "bad interval"), DecodeError("junk")])
def test_fatal_errors_are_not_retried(error) -> None:
    executor, sleep = make_executor(RetryPolicy(max_attempts=5))
    operation = FlakyOperation([error])

    with pytest.raises(type(error)):
        asyncio.run(executor.run(operation))

    assert operation.calls == 1
    assert sleep.delays == []


def test_unknown_exceptions_propagate_immediately() -> None:
    executor, _ = make_executor(RetryPolicy(max_attempts=5))
    operation = FlakyOperation([KeyError("boom")])

    with pytest.raises(KeyError):
        asyncio.run(executor.run(operation))
    assert operation.calls == 1


def test_builtin_connection_errors_count_as_transient() -> None:
    executor, _ = make_executor(RetryPolicy(max_attempts=3, base_delay=0.0, jitter=(0.0, 0.0)))
    operation = FlakyOperation([ConnectionResetError(), TimeoutError()])

    assert asyncio.run(executor.run(operation)) == "ok"
    assert operation.calls == 3


def test_retry_after_hint_overrides_backoff() -> None:
    executor, sleep = make_executor(RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=0.5))
    operation = FlakyOperation([RateLimitError(retry_after=2.0)])

    asyncio.run(executor.run(operation))

    assert sleep.delays == [2.0]


def test_backoff_is_capped_and_jittered() -> None:
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=5.0, multiplier=3.0, jitter=(0.1, 0.2))
    executor, sleep = make_executor(policy)
    operation = FlakyOperation([TransportError("x")] * 5)

    asyncio.run(executor.run(operation))

    expected = [1.0, 3.0, 5.0, 5.0, 5.0]
    assert len(sleep.delays) == 5
    for delay, base in zip(sleep.delays, expected):
        assert base + 0.1 <= delay <= base + 0.2


def test_per_call_policy_overrides_default() -> None:
    executor, _ = make_executor(RetryPolicy(max_attempts=5, base_delay=0.0, jitter=(0.0, 0.0)))
    operation = FlakyOperation([TransportError("x")] * 5)

    with pytest.raises(TransportError):
        asyncio.run(executor.run(operation, RetryPolicy(max_attempts=2, base_delay=0.0, jitter=(0.0, 0.0))))
    assert operation.calls == 2


def test_backoff_does_not_block_other_tasks() -> None:
    executor = RetryExecutor(RetryPolicy(max_attempts=2, base_delay=0.0, jitter=(0.0, 0.0)))
    operation = FlakyOperation([RateLimitError(retry_after=0.2)])
    finished: list[str] = []

    async def unrelated() -> None:
        await asyncio.sleep(0.01)
        finished.append("unrelated")

    async def retried() -> None:
        await executor.run(operation)
        finished.append("retried")

    async def run() -> None:
        await asyncio.gather(retried(), unrelated())

    asyncio.run(run())
    assert finished == ["unrelated", "retried"]


def test_policy_validation() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(jitter=(0.5, 0.1))
    assert RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0).backoff(4) == 3.0
