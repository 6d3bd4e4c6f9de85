"""Exponential backoff retry helpers for transient failures."""

import asyncio
import functools
import random
from typing import Callable, Optional, Tuple, Type

from response_engine.utils.logger import get_logger

logger = get_logger(__name__)


def backoff_delay(attempt: int, base: float, factor: float = 2.0, jitter: bool = True) -> float:
    """Delay to wait after failed attempt number *attempt* (1-based).

    ``base * factor^(attempt-1)`` plus up to 10% jitter.  A zero *base*
    disables waiting entirely, which tests rely on.
    """
    if base <= 0:
        return 0.0
    delay = base * (factor ** (attempt - 1))
    if jitter:
        delay += random.uniform(0, delay * 0.1)
    return delay


def retry_with_backoff(
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    max_retries_attr: Optional[str] = None,
    backoff_seconds_attr: Optional[str] = None,
) -> Callable:
    """Decorator that retries an async function with exponential backoff + jitter.

    Args:
        max_retries: Maximum number of retry attempts after the first failure.
        backoff_seconds: Delay before the first retry.
        backoff_factor: Multiplier applied to the delay on each successive retry.
        exceptions: Tuple of exception types that trigger a retry.
        max_retries_attr: When decorating a method, name of an instance
            attribute that overrides *max_retries* at call time.
        backoff_seconds_attr: Same, for *backoff_seconds*.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            retries = max_retries
            base_delay = backoff_seconds
            if max_retries_attr and args:
                retries = getattr(args[0], max_retries_attr, max_retries)
            if backoff_seconds_attr and args:
                base_delay = getattr(args[0], backoff_seconds_attr, backoff_seconds)
            for attempt in range(1, retries + 2):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt > retries:
                        logger.warning(
                            "retry_exhausted",
                            func=func.__name__,
                            max_retries=retries,
                            error=str(exc),
                        )
                        raise
                    delay = backoff_delay(attempt, base_delay, backoff_factor)
                    logger.info(
                        "retry_attempt",
                        func=func.__name__,
                        attempt=attempt,
                        max_retries=retries,
                        delay_seconds=round(delay, 2),
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
