"""Retry decorator with exponential backoff for provider calls.

Example:
    from capc.infra.retry import on_status_code, retry

    @retry(on=on_status_code(429, 503), max_attempts=3)
    async def get_instance(instance_id: int) -> ContaboInstance:
        ...
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

from capc.observability.logger import logger

type RetryPredicate = Callable[[Exception], bool]

TRANSIENT_STATUS_CODES = (0, 429, 500, 502, 503, 504)


def retry[**P, T](
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate = Exception,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 30.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async function with exponential backoff.

    Args:
        on: Exception class, tuple of classes, or predicate deciding whether
            a failure is worth another attempt.
        max_attempts: Attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        exponential_base: Multiplier applied per attempt.
        max_delay: Upper bound for a single delay.
        jitter: Add up to 10% random jitter to each delay.

    The last exception is re-raised once attempts run out or the
    predicate rejects it.
    """
    if isinstance(on, type | tuple):
        should_retry: RetryPredicate = lambda e: isinstance(e, on)  # noqa: E731
    else:
        should_retry = on

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        log = logger.bind(component="retry")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    attempt += 1
                    if attempt >= max_attempts or not should_retry(e):
                        raise
                    delay = min(base_delay * exponential_base ** (attempt - 1), max_delay)
                    if jitter:
                        delay += random.uniform(0, delay * 0.1)
                    log.warning(
                        "{fn} attempt {attempt}/{max} failed ({error}), retrying in {delay:.1f}s",
                        fn=func.__qualname__, attempt=attempt, max=max_attempts,
                        error=e, delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def on_status_code(*codes: int) -> RetryPredicate:
    """Retry when the exception carries one of ``codes`` as ``status``."""

    def predicate(e: Exception) -> bool:
        return getattr(e, "status", None) in codes

    return predicate


def transient() -> RetryPredicate:
    """Retry rate limits, gateway errors and transport failures (status 0)."""
    return on_status_code(*TRANSIENT_STATUS_CODES)
