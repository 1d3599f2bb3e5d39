"""Retry and timeout helpers for outbound calls."""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


def is_retryable_error(error: BaseException) -> bool:
    """Timeouts, connection failures and throttling/gateway responses."""
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return False


async def with_timeout(func: Callable[[], Awaitable[T]], timeout: float) -> T:
    """Run ``func()`` and raise asyncio.TimeoutError once ``timeout`` seconds pass."""
    return await asyncio.wait_for(func(), timeout=timeout)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    timeout: float = 30.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None
) -> T:
    """
    Call ``func()`` with a per-attempt timeout and exponential backoff.

    Non-retryable errors are raised immediately; the last error is raised
    once retries are exhausted.
    """
    should_retry = should_retry or is_retryable_error

    attempt = 0
    while True:
        try:
            return await with_timeout(func, timeout)
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                raise

            delay = min(base_delay * (2 ** attempt), max_delay)
            delay += delay * 0.1 * random.random()
            logger.warning(f"Attempt {attempt + 1} failed ({e!r}), retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
            attempt += 1
