"""
Resilient Call Wrapper
Bounded retry with exponential backoff for rate-limited remote calls.
"""
import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

T = TypeVar("T")

RATE_LIMIT_STATUS = 429
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 1.0


def is_rate_limit_error(exc: BaseException) -> bool:
    """True for HTTP 429 responses, whether carried as a status or in the message."""
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == RATE_LIMIT_STATUS:
        return True
    return str(RATE_LIMIT_STATUS) in str(exc)


def _log_retry(retry_state: RetryCallState) -> None:
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Rate limited, retrying",
        delay_seconds=delay,
        attempt=retry_state.attempt_number,
    )


def _retry_kwargs(max_retries: int, initial_delay: float) -> dict:
    # Attempt n (1-based) waits initial_delay * 2^(n-1) before the next try
    return dict(
        stop=stop_after_attempt(max(1, max_retries)),
        wait=wait_exponential(multiplier=initial_delay, min=0),
        retry=retry_if_exception(is_rate_limit_error),
        before_sleep=_log_retry,
        reraise=True,
    )


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay: float = DEFAULT_INITIAL_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Invoke a no-argument coroutine function, retrying only on rate limits.

    Args:
        operation: The remote call to make
        max_retries: Total number of attempts
        initial_delay: Delay in seconds before the first retry
        sleep: Awaitable sleep used between attempts

    Returns:
        The operation's result

    Raises:
        The original exception for non-rate-limit failures or when
        attempts are exhausted.
    """
    retrying = AsyncRetrying(sleep=sleep, **_retry_kwargs(max_retries, initial_delay))
    return await retrying(operation)
