"""Bounded retry for backend calls: immediate re-issue, no backoff, no jitter."""

import functools
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "backend call",
) -> T:
    """
    Await `operation()` up to `max_retries + 1` times.

    Only exceptions in `retry_on` trigger another attempt; anything else
    propagates immediately. After the last attempt the final exception is
    re-raised unchanged.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        max_retries: Extra attempts after the first one.
        retry_on: Exception types considered transient.
        description: Name used in log messages.
    """
    attempts = max(max_retries, 0) + 1
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt == attempts:
                logger.error(
                    f"{description} failed after {attempts} attempts: {e}",
                    extra={"attempts": attempts, "error_type": type(e).__name__},
                )
                raise
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}), retrying: {e}")
    raise AssertionError("unreachable")


def retry_async(
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
):
    """Decorator form of `call_with_retry` for coroutine functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await call_with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                retry_on=retry_on,
                description=func.__qualname__,
            )

        return wrapper

    return decorator
