"""
Bounded Retry with Exponential Backoff.

A small reusable helper shared by every Profile Store call.  The caller
supplies a predicate that decides whether a failure is transient; only
those failures are retried, with the delay doubling between attempts
(1 s, 2 s, ... for the default base of one second).  Terminal failures
propagate after the first attempt.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from portal_auth.logger import StructuredLogger

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]

__all__ = ["SleepFunc", "backoff_schedule", "retry_async"]


def backoff_schedule(max_attempts: int, base_delay_s: float) -> list[float]:
    """Return the delays slept between *max_attempts* attempts.

    >>> backoff_schedule(3, 1.0)
    [1.0, 2.0]
    """
    return [base_delay_s * (2 ** retry) for retry in range(max(max_attempts - 1, 0))]


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    is_transient: Callable[[BaseException], bool],
    operation_name: str,
    logger: StructuredLogger,
    max_attempts: int = 3,
    base_delay_s: float = 1.0,
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """Await *operation* until it succeeds or the attempt budget runs out.

    Parameters
    ----------
    operation:
        Zero-argument callable returning a fresh awaitable per attempt.
    is_transient:
        Predicate classifying an exception as retryable.
    operation_name:
        Label used in log messages, e.g. ``"fetch_profile(u1)"``.
    logger:
        Structured logger for retry diagnostics.
    max_attempts:
        Total attempts including the first one.
    base_delay_s:
        Delay before the first retry; doubled for each further retry.
    sleep:
        Awaitable sleep function, injectable for tests.

    Raises
    ------
    Exception
        The last error raised by *operation*, unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    delays = backoff_schedule(max_attempts, base_delay_s)

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_transient(exc):
                raise
            if attempt >= max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s",
                    operation_name,
                    attempt,
                    exc,
                    extra={"event": "RETRY_EXHAUSTED", "attempts": attempt},
                )
                raise
            delay = delays[attempt - 1]
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1fs.",
                operation_name,
                attempt,
                max_attempts,
                exc,
                delay,
                extra={"event": "RETRY", "attempt": attempt},
            )
            await sleep(delay)

    raise RuntimeError(f"{operation_name}: retry loop exited without a result")
