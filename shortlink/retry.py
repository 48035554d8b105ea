"""Retry-with-predicate combinator on top of tenacity.

The caller supplies the classifier; nothing in here knows which errors are
worth retrying. Attempts run strictly one after another, and the backoff sleep
suspends only the calling task.

Backoff with the defaults used by the click worker (base 100 ms, 6 attempts)::

    attempt 1 ── fail ── sleep 0.1s
    attempt 2 ── fail ── sleep 0.2s
    attempt 3 ── fail ── sleep 0.4s
    attempt 4 ── fail ── sleep 0.8s
    attempt 5 ── fail ── sleep 1.6s
    attempt 6 ── fail ── last error re-raised
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

__all__ = ["retry_if"]

T = TypeVar("T")


async def retry_if(
    operation: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[BaseException], bool],
    attempts: int = 6,
    base_delay: float = 0.1,
    on_retry: Callable[[int, BaseException], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or runs out of attempts.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        is_retryable: Classifier; errors it rejects are re-raised immediately.
        attempts: Total attempts including the first one.
        base_delay: Delay in seconds after the first failure; doubles each time.
        on_retry: Called with (attempt_number, error) before each backoff sleep.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        Whatever ``operation`` returned on the successful attempt.

    Raises:
        The last error raised by ``operation``.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is not None and retry_state.outcome is not None:
            on_retry(retry_state.attempt_number, retry_state.outcome.exception())

    # tenacity only awaits coroutine functions; ``operation`` may be a plain
    # callable returning an awaitable, so each attempt goes through one.
    @retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        retry=retry_if_exception(is_retryable),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    async def _attempt() -> T:
        return await operation()

    return await _attempt()
