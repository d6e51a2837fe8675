"""
Retry utilities for store writes, Redis calls and client reconnects.
Implements configurable fixed, linear and exponential backoff.

Version: 1.0.0
"""
import asyncio
import logging
import random
import functools
from typing import Callable, Optional, Tuple, Type, Any
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class RetryStrategy(str, Enum):
    """Retry strategy enumeration."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    jitter: float = 0.0
    retry_on_exceptions: Tuple[Type[Exception], ...] = (Exception,)


def calculate_retry_delay(
    attempt: int,
    config: RetryConfig
) -> float:
    """
    Calculate delay before next retry attempt.

    Args:
        attempt: Current attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    if config.strategy == RetryStrategy.FIXED:
        delay = config.initial_delay

    elif config.strategy == RetryStrategy.LINEAR:
        delay = config.initial_delay * (attempt + 1)

    elif config.strategy == RetryStrategy.EXPONENTIAL:
        delay = config.initial_delay * (config.exponential_base ** attempt)

    else:
        delay = config.initial_delay

    if config.jitter:
        delay += random.uniform(0, config.jitter)

    # Cap at max delay
    return min(delay, config.max_delay)


def async_retry(config: Optional[RetryConfig] = None):
    """
    Decorator for retrying async function calls with configurable backoff.

    Only exceptions listed in ``retry_on_exceptions`` are retried; anything
    else propagates immediately.

    Args:
        config: Retry configuration

    Example:
        @async_retry(RetryConfig(max_attempts=3))
        async def unreliable_async_function():
            ...
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)

                except config.retry_on_exceptions as e:
                    last_exception = e

                    if attempt < config.max_attempts - 1:
                        delay = calculate_retry_delay(attempt, config)
                        logger.warning(
                            f"{func.__name__} failed with {type(e).__name__}, "
                            f"retrying in {delay:.2f}s (attempt {attempt + 1}/{config.max_attempts}): {e}"
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"{func.__name__} failed after {config.max_attempts} attempts: {e}"
                        )

            # All retries exhausted
            if last_exception:
                raise last_exception

            raise RuntimeError(f"{func.__name__} failed without exception")

        return wrapper
    return decorator


__all__ = [
    'RetryConfig',
    'RetryStrategy',
    'async_retry',
    'calculate_retry_delay'
]
