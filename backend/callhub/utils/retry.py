"""
Retry helpers shared by the SQL store, the HTTP user directory and the
signaling client's reconnect loop.

Version: 1.0.0
"""
import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Backoff settings.

    ``jitter`` is the fraction of each delay that is randomized, so that
    many clients dropped by the same server restart do not reconnect in
    lockstep.
    """
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: float = 0.0
    retry_on_exceptions: Tuple[Type[BaseException], ...] = (Exception,)


def calculate_retry_delay(attempt: int, config: RetryConfig) -> float:
    """
    Delay in seconds before retry number ``attempt`` (0-indexed).
    """
    delay = min(config.initial_delay * (config.exponential_base ** attempt), config.max_delay)

    if config.jitter > 0:
        spread = delay * min(config.jitter, 1.0)
        delay = delay - spread + random.uniform(0, spread)

    return max(delay, 0.0)


def async_retry(config: RetryConfig = None):
    """
    Retry an async callable on the configured exception types.

    Exceptions outside ``retry_on_exceptions`` propagate on the first
    attempt. The last retryable error is re-raised once attempts run out.

    Example:
        @async_retry(RetryConfig(max_attempts=3, retry_on_exceptions=(OperationalError,)))
        async def save(...):
            ...
    """
    config = config or RetryConfig()

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except config.retry_on_exceptions as e:
                    if attempt >= config.max_attempts - 1:
                        logger.error(
                            f"{func.__qualname__} failed after {config.max_attempts} attempts: {e}"
                        )
                        raise

                    delay = calculate_retry_delay(attempt, config)
                    logger.warning(
                        f"{func.__qualname__} raised {type(e).__name__}, "
                        f"retry {attempt + 1}/{config.max_attempts - 1} in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError(f"{func.__qualname__} configured with max_attempts < 1")

        return wrapper
    return decorator


__all__ = [
    'RetryConfig',
    'async_retry',
    'calculate_retry_delay'
]
