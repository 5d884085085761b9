"""Exponential backoff retry for provider calls."""

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import httpx

from prnotify.core.config import settings
from prnotify.core.logging import get_logger
from prnotify.providers.errors import ProviderError, RateLimitError

logger = get_logger(__name__)

T = TypeVar("T")


def is_retryable(error: Exception) -> bool:
    """Rate limits, 5xx responses and transport failures are worth retrying."""
    if isinstance(error, (RateLimitError, httpx.TransportError)):
        return True
    if isinstance(error, ProviderError):
        return error.status_code is not None and error.status_code >= 500
    return False


def backoff_delay(attempt: int, base_delay: float, error: Exception | None = None) -> float:
    """
    Delay before the next attempt.

    Rate limits wait for their Retry-After hint, or the configured default
    when there is none. Anything else waits base * 2**attempt plus up to one
    base delay of jitter.
    """
    if isinstance(error, RateLimitError):
        if error.retry_after is not None:
            return float(error.retry_after)
        return settings.default_retry_after
    return base_delay * (2**attempt) + random.uniform(0, base_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int | None = None,
    base_delay: float | None = None,
    should_retry: Callable[[Exception], bool] = is_retryable,
    description: str = "provider call",
) -> T:
    """
    Run an async operation, retrying transient failures with backoff.

    Args:
        operation: Zero-argument coroutine factory
        max_retries: Retries after the first attempt (default from settings)
        base_delay: Base delay in seconds (default from settings)
        should_retry: Predicate deciding whether an error is transient
        description: Label used in log messages

    Returns:
        Result of the operation

    Raises:
        The last error once retries are exhausted, or any non-retryable error
    """
    if max_retries is None:
        max_retries = settings.retry_max_attempts
    if base_delay is None:
        base_delay = settings.retry_base_delay

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_retries or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay, e)
            logger.warning(
                f"{description} failed, retrying",
                attempt=attempt + 1,
                max_retries=max_retries,
                delay=round(delay, 2),
                error=str(e),
            )
            await asyncio.sleep(delay)
            attempt += 1
