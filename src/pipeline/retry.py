"""Generic async retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from src.pipeline.errors import OperationCancelledError
from src.pipeline_config import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
RetryPredicate = Callable[[BaseException], bool]
RetryHook = Callable[[BaseException, int, float], None]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Wait before retry number ``attempt + 1``: ``min(base * 2**attempt, max)``."""
    return min(base_delay * (2**attempt), max_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    should_retry: RetryPredicate | None = None,
    on_retry: RetryHook | None = None,
    operation_name: str = "operation",
    sleep: Sleep = asyncio.sleep,
    stop_event: asyncio.Event | None = None,
) -> T:
    """Run *operation*, retrying failures the predicate accepts.

    The operation is attempted at most ``max_retries + 1`` times. Errors the
    predicate rejects are re-raised immediately without consuming the retry
    budget; after the last attempt the final error is re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_retries: Retries after the first attempt.
        base_delay: Seconds to wait before the first retry.
        max_delay: Upper bound for any single wait.
        should_retry: Classifies an error as retryable. Defaults to always.
        on_retry: Observer called as ``(error, attempt, wait)`` before waiting.
        operation_name: Used in log lines only.
        sleep: Awaitable sleep, injectable for tests.
        stop_event: When set during a wait, raises
            :class:`OperationCancelledError` instead of retrying.
    """
    attempt = 0
    while True:
        if stop_event is not None and stop_event.is_set():
            raise OperationCancelledError(f"{operation_name} cancelled")
        try:
            result = await operation()
        except Exception as exc:
            retryable = should_retry(exc) if should_retry is not None else True
            if not retryable:
                logger.error("%s failed with a non-retryable error: %s", operation_name, exc)
                raise
            if attempt >= max_retries:
                logger.error("%s failed after %d attempts: %s", operation_name, attempt + 1, exc)
                raise

            wait = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "%s failed (%s). Retrying %d/%d in %.1fs",
                operation_name,
                exc,
                attempt + 1,
                max_retries,
                wait,
            )
            if on_retry is not None:
                on_retry(exc, attempt, wait)
            await sleep(wait)
            attempt += 1
        else:
            if attempt > 0:
                logger.info("%s succeeded after %d retries", operation_name, attempt)
            return result


async def retry_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    **kwargs: object,
) -> T:
    """Shorthand for :func:`with_retry` using a :class:`RetryPolicy`."""
    return await with_retry(
        operation,
        max_retries=policy.max_retries,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        **kwargs,  # type: ignore[arg-type]
    )
