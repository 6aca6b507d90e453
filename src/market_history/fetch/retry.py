"""Bounded retries with exponential backoff around single remote calls."""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from market_history.data.errors import is_retryable

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff configuration; ``attempt`` counts from zero for the first retry."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: tuple[float, float] = (0.0, 0.25)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0.0 or self.max_delay < 0.0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1")
        low, high = self.jitter
        if low < 0.0 or high < low:
            raise ValueError("jitter must be a (low, high) range with 0 <= low <= high")

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay * self.multiplier**attempt, self.max_delay)


class wait_policy(wait_base):
    """Tenacity wait strategy: policy backoff plus jitter, unless the error says otherwise."""

    def __init__(self, policy: RetryPolicy, rng: random.Random) -> None:
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome is not None else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return max(float(retry_after), 0.0)
        low, high = self.policy.jitter
        return self.policy.backoff(retry_state.attempt_number - 1) + self.rng.uniform(low, high)


class RetryExecutor:
    """Run one logical remote call, retrying transient failures.

    Fatal errors (authentication, malformed requests, undecodable
    responses) propagate on the first attempt. Backoff sleeps suspend only
    the awaiting task.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        classifier: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._classifier = classifier
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        *,
        description: str = "remote call",
    ) -> T:
        policy = policy or self.policy

        def _log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome is not None else None
            delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
            logger.warning(
                "{description} failed (attempt {attempt}/{limit}): {error!r}; retrying in {delay:.2f}s",
                description=description,
                attempt=retry_state.attempt_number,
                limit=policy.max_attempts,
                error=error,
                delay=delay,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_policy(policy, self._rng),
            retry=retry_if_exception(self._classifier),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result
