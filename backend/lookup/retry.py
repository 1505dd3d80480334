"""Exponential backoff around classified upstream failures."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from loguru import logger

from .errors import ClassifiedError

T = TypeVar("T")

_DEFAULT_BASE_DELAY_MS = 700.0
_DEFAULT_CAP_MS = 10_000.0
_DEFAULT_JITTER_MS = 200.0

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay_ms: float = _DEFAULT_BASE_DELAY_MS
    cap_ms: float = _DEFAULT_CAP_MS
    jitter_ms: float = _DEFAULT_JITTER_MS

    @property
    def attempts(self) -> int:
        return max(1, int(self.max_attempts))

    def backoff_ms(self, retries_done: int) -> float:
        """Capped exponential component of the wait before the next retry."""

        return min(self.base_delay_ms * (2 ** max(retries_done, 0)), self.cap_ms)

    def delay_seconds(self, retries_done: int, *, rng: Callable[[], float] = random.random) -> float:
        jitter = rng() * self.jitter_ms if self.jitter_ms > 0 else 0.0
        return (self.backoff_ms(retries_done) + jitter) / 1000.0


async def execute_with_retry(
    task: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "task",
) -> T:
    """Run ``task`` until it succeeds, fails fatally, or attempts run out.

    Fatal :class:`ClassifiedError` instances propagate immediately. Retryable
    ones are retried after a capped exponential backoff with jitter; once the
    attempts are exhausted the last error is re-raised untouched.
    """

    attempts = policy.attempts
    for attempt in range(1, attempts + 1):
        try:
            return await task()
        except ClassifiedError as exc:
            if not exc.retryable or attempt >= attempts:
                raise
            delay = policy.delay_seconds(attempt - 1)
            logger.debug(
                "{} attempt {}/{} failed ({}); retrying in {:.0f}ms",
                label,
                attempt,
                attempts,
                exc.message,
                delay * 1000,
            )
            await sleep(delay)
    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


__all__ = ["RetryPolicy", "execute_with_retry"]
