"""Exponential backoff for transient outbound failures."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncContextManager, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from spamwatch.settings import Settings

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def flagged_retryable(exc: BaseException) -> bool:
    """True for spamwatch errors whose class marks them ``retryable``."""

    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True, slots=True)
class BackoffPolicy:
    """Attempt budget and delay curve for :func:`retry_async`.

    The n-th retry waits ``base_delay_seconds * 2 ** (n - 1)`` seconds, capped
    at ``max_delay_seconds``. With ``jitter`` the wait is drawn uniformly
    between zero and that value.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.1
    max_delay_seconds: float = 10.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: Settings, *, max_attempts: int) -> "BackoffPolicy":
        return cls(
            max_attempts=max_attempts,
            base_delay_seconds=settings.retry.base_delay_seconds,
            max_delay_seconds=settings.retry.max_delay_seconds,
            jitter=settings.retry.jitter,
        )

    def wait_strategy(self) -> wait_base:
        if self.jitter:
            return wait_random_exponential(multiplier=self.base_delay_seconds, max=self.max_delay_seconds)
        return wait_exponential(multiplier=self.base_delay_seconds, max=self.max_delay_seconds)


def _log_before_sleep(label: str, policy: BackoffPolicy) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        LOGGER.debug(
            "%s failed on attempt %d/%d (%s); retrying in %.3fs",
            label,
            retry_state.attempt_number,
            policy.max_attempts,
            exc,
            delay,
        )

    return log


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: BackoffPolicy,
    is_retryable: Callable[[BaseException], bool] = flagged_retryable,
    label: str = "operation",
    limiter: AsyncContextManager | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or attempts run out.

    Only exceptions for which ``is_retryable`` returns True are retried; the
    last exception is re-raised unchanged once the budget is spent. When
    ``limiter`` is given, each attempt holds it and backoff sleeps do not.
    """

    async def attempt() -> T:
        if limiter is None:
            return await operation()
        async with limiter:
            return await operation()

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.max_attempts)),
        wait=policy.wait_strategy(),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_before_sleep(label, policy),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(attempt)


__all__ = ["BackoffPolicy", "flagged_retryable", "retry_async"]
