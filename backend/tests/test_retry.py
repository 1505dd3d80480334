from __future__ import annotations

import pytest

from lookup.errors import FatalError, RetryableError
from lookup.retry import RetryPolicy, execute_with_retry


class FlakyTask:
    """Raise the queued errors in order, then return ``value``."""

    def __init__(self, errors, value="done"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_succeeds_on_last_attempt():
    task = FlakyTask([RetryableError("503"), RetryableError("503"), RetryableError("503")])
    sleep = RecordingSleep()

    result = await execute_with_retry(task, RetryPolicy(max_attempts=4), sleep=sleep)

    assert result == "done"
    assert task.calls == 4
    assert len(sleep.delays) == 3


@pytest.mark.asyncio
async def test_exhaustion_reraises_last_error():
    last = RetryableError("third", status=502)
    task = FlakyTask([RetryableError("first"), RetryableError("second"), last])
    sleep = RecordingSleep()

    with pytest.raises(RetryableError) as excinfo:
        await execute_with_retry(task, RetryPolicy(max_attempts=3), sleep=sleep)

    assert excinfo.value is last
    assert task.calls == 3
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried():
    task = FlakyTask([FatalError("not found", status=404)])
    sleep = RecordingSleep()

    with pytest.raises(FatalError):
        await execute_with_retry(task, RetryPolicy(max_attempts=4), sleep=sleep)

    assert task.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_non_positive_attempts_still_run_once():
    task = FlakyTask([RetryableError("boom")])

    with pytest.raises(RetryableError):
        await execute_with_retry(task, RetryPolicy(max_attempts=0), sleep=RecordingSleep())

    assert task.calls == 1


@pytest.mark.asyncio
async def test_waits_grow_exponentially_within_jitter():
    task = FlakyTask([RetryableError("x")] * 3)
    sleep = RecordingSleep()
    policy = RetryPolicy(max_attempts=4, base_delay_ms=700, cap_ms=10_000)

    await execute_with_retry(task, policy, sleep=sleep)

    for delay, expected_ms in zip(sleep.delays, (700, 1400, 2800)):
        assert expected_ms / 1000 <= delay < (expected_ms + 200) / 1000


def test_backoff_is_monotonic_and_capped():
    policy = RetryPolicy(base_delay_ms=700, cap_ms=10_000)
    waits = [policy.backoff_ms(n) for n in range(10)]

    assert waits[0] == 700
    assert waits == sorted(waits)
    assert max(waits) == 10_000


def test_delay_adds_bounded_jitter():
    policy = RetryPolicy(base_delay_ms=700, cap_ms=10_000, jitter_ms=200)

    assert policy.delay_seconds(0, rng=lambda: 0.0) == pytest.approx(0.7)
    assert policy.delay_seconds(0, rng=lambda: 0.999) == pytest.approx(0.8998)
    assert policy.delay_seconds(20, rng=lambda: 0.5) == pytest.approx(10.1)
