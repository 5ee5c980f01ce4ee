"""
Retry helper for provider calls.

Retries ProviderTransientError with exponential backoff; every other
exception propagates on the first occurrence.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import ProviderTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, backoff_ms: int) -> float:
    """Seconds to wait after the given (1-based) failed attempt."""
    return (backoff_ms * (2 ** (attempt - 1))) / 1000.0


async def retry_async(
    call: Callable[[], Awaitable[T]],
    attempts: int,
    backoff_ms: int,
    label: str = "provider call",
) -> T:
    """
    Run `call` up to `attempts` times while it raises ProviderTransientError.

    Args:
        call: Zero-argument coroutine factory
        attempts: Total attempts (values below 1 are treated as 1)
        backoff_ms: Base delay; doubles after every failed attempt
        label: Name used in log lines

    Returns:
        Result of the first successful call

    Raises:
        ProviderTransientError: If the last attempt is still transient
    """
    attempts = max(1, attempts)
    attempt = 1
    while True:
        try:
            return await call()
        except ProviderTransientError as e:
            if attempt >= attempts:
                logger.warning(f"[PUSH] {label} failed after {attempts} attempts: {e}")
                raise
            delay = backoff_delay(attempt, backoff_ms)
            logger.info(
                f"[PUSH] {label} transient failure ({e}), "
                f"retry {attempt + 1}/{attempts} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            attempt += 1
