from __future__ import annotations

import asyncio

import pytest

from spamwatch.errors import ProviderNotFound, ProviderTimeout
from spamwatch.util.retry import BackoffPolicy, flagged_retryable, retry_async


class _Transient(Exception):
    pass


class _Permanent(Exception):
    pass


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _always_fail(calls: list[int]) -> str:
    calls.append(1)
    raise _Transient()


@pytest.mark.anyio
async def test_delay_curve_is_exponential_and_capped() -> None:
    sleeper = _Recorder()
    calls: list[int] = []
    policy = BackoffPolicy(max_attempts=5, base_delay_seconds=0.5, max_delay_seconds=3.0, jitter=False)

    with pytest.raises(_Transient):
        await retry_async(lambda: _always_fail(calls), policy=policy, is_retryable=lambda exc: True, sleep=sleeper)

    assert len(calls) == 5
    assert sleeper.delays == [0.5, 1.0, 2.0, 3.0]


@pytest.mark.anyio
async def test_jitter_stays_below_capped_delay() -> None:
    sleeper = _Recorder()
    policy = BackoffPolicy(max_attempts=4, base_delay_seconds=1.0, max_delay_seconds=2.0, jitter=True)

    for _ in range(20):
        with pytest.raises(_Transient):
            await retry_async(lambda: _always_fail([]), policy=policy, is_retryable=lambda exc: True, sleep=sleeper)

    assert len(sleeper.delays) == 60
    assert all(0.0 <= delay <= 2.0 for delay in sleeper.delays)


def test_flagged_retryable_reads_error_class() -> None:
    assert flagged_retryable(ProviderTimeout("moralis", "slow"))
    assert not flagged_retryable(ProviderNotFound("moralis", "missing"))
    assert not flagged_retryable(ValueError("plain"))


@pytest.mark.anyio
async def test_limiter_is_held_per_attempt_and_released_during_backoff() -> None:
    limiter = asyncio.Semaphore(1)
    held: list[bool] = []
    released: list[bool] = []

    async def operation() -> str:
        held.append(limiter.locked())
        if len(held) < 3:
            raise _Transient()
        return "ok"

    async def sleep(delay: float) -> None:
        released.append(not limiter.locked())

    policy = BackoffPolicy(max_attempts=3, base_delay_seconds=0.1, jitter=False)
    result = await retry_async(
        operation, policy=policy, is_retryable=lambda exc: True, limiter=limiter, sleep=sleep
    )

    assert result == "ok"
    assert held == [True, True, True]
    assert released == [True, True]
    assert not limiter.locked()


def test_policy_reads_retry_settings(make_settings) -> None:
    settings = make_settings(retry={"base_delay_seconds": 0.25, "max_delay_seconds": 4.0, "jitter": True})

    policy = BackoffPolicy.from_settings(settings, max_attempts=7)

    assert policy == BackoffPolicy(max_attempts=7, base_delay_seconds=0.25, max_delay_seconds=4.0, jitter=True)


@pytest.mark.anyio
async def test_retries_transient_errors_until_success() -> None:
    calls = 0
    sleeper = _Recorder()

    async def operation() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise _Transient()
        return "ok"

    policy = BackoffPolicy(max_attempts=3, base_delay_seconds=0.1, max_delay_seconds=1.0, jitter=False)
    result = await retry_async(
        operation, policy=policy, is_retryable=lambda exc: isinstance(exc, _Transient), sleep=sleeper
    )

    assert result == "ok"
    assert calls == 3
    assert sleeper.delays == [0.1, 0.2]


@pytest.mark.anyio
async def test_gives_up_after_max_attempts() -> None:
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise _Transient(calls)

    policy = BackoffPolicy(max_attempts=2, base_delay_seconds=0.0, jitter=False)
    with pytest.raises(_Transient) as excinfo:
        await retry_async(operation, policy=policy, is_retryable=lambda exc: True, sleep=_Recorder())

    assert calls == 2
    assert excinfo.value.args == (2,)


@pytest.mark.anyio
async def test_permanent_errors_are_not_retried() -> None:
    calls = 0
    sleeper = _Recorder()

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise _Permanent()

    policy = BackoffPolicy(max_attempts=5, base_delay_seconds=0.0, jitter=False)
    with pytest.raises(_Permanent):
        await retry_async(
            operation, policy=policy, is_retryable=lambda exc: isinstance(exc, _Transient), sleep=sleeper
        )

    assert calls == 1
    assert sleeper.delays == []
