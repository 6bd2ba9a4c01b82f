"""Exponential backoff retries for calls to the quote source.

Only failures wrapped in :class:`RetryableError` are retried. Anything else is
terminal and propagates on the attempt that raised it. Cancellation of the
calling task while a backoff sleep is pending propagates immediately and no
further attempt is started.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable backoff configuration shared by every retry invocation."""

    max_retries: int = 3
    initial_backoff: float = 0.1
    max_backoff: float = 10.0
    multiplier: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("backoff durations must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")


class RetryableError(Exception):
    """Marks the wrapped error as transient and safe to retry."""

    def __init__(self, error: BaseException) -> None:
        super().__init__(str(error))
        self.error = error
        self.__cause__ = error

    def __repr__(self) -> str:
        return f"RetryableError({self.error!r})"


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RetryableError)


def base_backoff(policy: RetryPolicy, attempt: int) -> float:
    """Backoff before ``attempt`` (1-indexed) prior to jitter."""

    backoff = policy.initial_backoff * policy.multiplier ** (attempt - 1)
    return min(backoff, policy.max_backoff)


def backoff_delay(policy: RetryPolicy, attempt: int, rng: Optional[random.Random] = None) -> float:
    """Backoff before ``attempt`` with uniform jitter applied."""

    backoff = base_backoff(policy, attempt)
    if policy.jitter > 0:
        uniform = (rng or random).uniform
        backoff += backoff * policy.jitter * uniform(-1.0, 1.0)
    if backoff < 0:
        backoff = policy.initial_backoff
    return backoff


class RetryExecutor:
    """Runs async work with exponential backoff between retryable failures."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    async def execute(self, work: Callable[[], Awaitable[T]]) -> T:
        """Await ``work()`` up to ``max_retries + 1`` times.

        Returns the first successful result. A terminal error is raised as is;
        once every retry is spent the last :class:`RetryableError` is raised.
        """

        # RetryPolicy guarantees at least one attempt, which binds this on failure.
        last_error: RetryableError
        for attempt in range(self.policy.max_retries + 1):
            if attempt > 0:
                delay = backoff_delay(self.policy, attempt, self._rng)
                self.logger.debug(
                    "Retrying after %.3fs (attempt %s/%s)", delay, attempt, self.policy.max_retries,
                    extra={"event": "retry_backoff", "attempt": attempt, "sleep_seconds": delay},
                )
                await self._sleep(delay)
            try:
                return await work()
            except RetryableError as exc:
                last_error = exc
                self.logger.debug(
                    "Retryable failure on attempt %s: %s", attempt, exc,
                    extra={"event": "retryable_error", "attempt": attempt},
                )

        raise last_error


__all__ = [
    "RetryPolicy",
    "RetryableError",
    "RetryExecutor",
    "backoff_delay",
    "base_backoff",
    "is_retryable",
]
