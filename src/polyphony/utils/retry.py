"""
Backoff for reopening upstream streams.

A stream is only retried while opening it; once a chunk has been forwarded
to a listener the adapter reports failures instead of starting over.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How often and how patiently to reopen a failed upstream call."""

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (
        ConnectionError,
        TimeoutError,
    )

    def should_retry(self, error: Exception) -> bool:
        # Provider errors carry their own verdict
        verdict = getattr(error, "retryable", None)
        if verdict is not None:
            return bool(verdict)
        return isinstance(error, self.retryable_exceptions)


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: float | None = None,
) -> float:
    """
    Seconds to wait before attempt ``attempt + 1``.

    A server-supplied ``retry_after`` replaces the exponential schedule.
    Both are capped at ``max_delay`` before jitter is applied.
    """
    backoff = retry_after or config.base_delay * config.exponential_base ** attempt
    capped = min(backoff, config.max_delay)
    return capped * (0.5 + random.random()) if config.jitter else capped


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures."""
    config = config or RetryConfig()
    name = getattr(func, "__qualname__", repr(func))
    attempt = 0

    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e):
                raise
            if attempt >= config.max_retries:
                logger.error("Giving up on upstream call", call=name, attempts=attempt + 1, error=str(e))
                raise

            delay = calculate_delay(attempt, config, getattr(e, "retry_after", None))
            attempt += 1
            logger.warning(
                "Upstream call failed, retrying",
                call=name,
                attempt=attempt,
                max_retries=config.max_retries,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry_async`."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(func, *args, config=config, **kwargs)

        return wrapper

    return decorator
