from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import ProviderTimeoutError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout_ms: Optional[float], operation: str) -> T:
    """Await ``awaitable`` and raise ProviderTimeoutError once ``timeout_ms`` elapses."""
    if not timeout_ms:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError:
        raise ProviderTimeoutError(operation, timeout_ms) from None


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    initial_delay_ms: float = 500.0,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` with up to ``max_retries`` extra attempts.

    The delay doubles after every failed attempt (500ms, 1s, 2s ...). Errors
    for which ``should_retry`` is false are raised immediately.
    """
    delay_ms = initial_delay_ms
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= max_retries or not should_retry(exc):
                raise
            attempt += 1
            logger.debug(
                "%s failed (%s), retry %d/%d in %.0fms", label, exc, attempt, max_retries, delay_ms
            )
            await sleep(delay_ms / 1000.0)
            delay_ms *= 2
