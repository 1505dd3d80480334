"""Bounded fan-out of independent async tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")


@dataclass(slots=True)
class Settled(Generic[T]):
    """Outcome of one task: a value or the exception it raised."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_bounded(
    factories: Sequence[Callable[[], Awaitable[T]]],
    max_concurrent: int,
) -> list[Settled[T]]:
    """Run every factory with at most ``max_concurrent`` in flight.

    Tasks start in input order as workers free up. Failures are captured per
    task and never cancel siblings; the result list mirrors the input order.
    """

    total = len(factories)
    results: list[Settled[T]] = [Settled() for _ in range(total)]
    if total == 0:
        return results

    limit = max(1, int(max_concurrent or 1))
    pending = iter(range(total))

    async def worker() -> None:
        # next() on a shared iterator is safe: workers only yield at awaits.
        for index in pending:
            try:
                results[index].value = await factories[index]()
            except Exception as exc:  # noqa: BLE001 - captured per task
                results[index].error = exc

    await asyncio.gather(*(worker() for _ in range(min(limit, total))))
    return results


__all__ = ["Settled", "gather_bounded"]
