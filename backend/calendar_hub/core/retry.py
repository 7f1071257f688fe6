"""
Retry utilities for calls to external calendar providers.

Only errors flagged as transient are retried, with bounded exponential
backoff. Everything else (including auth failures) propagates on the first
attempt.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from calendar_hub.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_error(exception: Exception) -> bool:
    """True when the error says the call may succeed if repeated."""
    return bool(getattr(exception, "transient", False))


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number `attempt` (1-based)."""
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    if jitter:
        delay = delay * (0.5 + random.random() / 2)
    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    jitter: bool = True,
    description: str = "provider call",
) -> T:
    """Await `func()` until it succeeds, retrying transient failures.

    Args:
        func: Zero-argument coroutine factory (called once per attempt).
        max_attempts: Total attempts, defaults to SYNC_MAX_ATTEMPTS.
        base_delay: First backoff delay in seconds.
        max_delay: Upper bound for a single delay.
        jitter: Randomise delays to spread concurrent retries.
        description: Used in log lines.

    Raises:
        The last exception once attempts are exhausted, or the first
        non-transient one.
    """
    settings = get_settings()
    max_attempts = max_attempts or settings.SYNC_MAX_ATTEMPTS
    base_delay = settings.SYNC_BACKOFF_BASE_SECONDS if base_delay is None else base_delay
    max_delay = settings.SYNC_BACKOFF_MAX_SECONDS if max_delay is None else max_delay

    attempt = 1
    while True:
        try:
            result = await func()
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}")
            return result
        except Exception as e:
            if not is_transient_error(e) or attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
