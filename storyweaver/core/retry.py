"""
Retry utilities with exponential backoff.

Only rate-limit failures are retried: a provider that answers 429 /
RESOURCE_EXHAUSTED is waited out with exponential backoff, every other
failure propagates immediately.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar

from storyweaver.core.exceptions import GenerationErrorKind, classify_error
from storyweaver.core.logging_config import get_logger

logger = get_logger("core.retry")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class RetryConfig:
    """Configuration for rate-limit retry behavior."""
    max_attempts: int = 3  # Total calls, including the first
    base_delay: float = 5.0  # Seconds before the first retry
    max_delay: float = 30.0  # Cap for a single wait
    exponential_base: float = 2.0
    jitter: bool = False
    jitter_range: Tuple[float, float] = (0.5, 1.5)


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """
    Calculate delay before the next attempt.

    Args:
        attempt: Number of the retry about to happen (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds: 5, 10, 20, 30, 30, ... with the default config
    """
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= random.uniform(*config.jitter_range)

    return delay


async def retry_on_rate_limit(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any
) -> T:
    """
    Call an async function, retrying while it fails with a rate-limit error.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        config: Retry configuration (uses defaults if not provided)
        on_retry: Optional callback called with (exception, attempt, delay)
        sleep: Awaitable sleep, replaceable in tests
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Raises:
        The last error once attempts are exhausted, or any non-rate-limit
        error as soon as it happens.

    Example:
        image = await retry_on_rate_limit(
            generator.generate,
            request,
            config=RetryConfig(max_attempts=5)
        )
    """
    config = config or DEFAULT_RETRY_CONFIG
    attempts = max(1, config.max_attempts)

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if classify_error(e) is not GenerationErrorKind.RATE_LIMITED:
                raise

            if attempt + 1 >= attempts:
                logger.error(f"Rate limited on all {attempts} attempts. Last error: {e}")
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                f"Rate limited (attempt {attempt + 1}/{attempts}): {e}. "
                f"Retrying in {delay:.1f}s..."
            )

            if on_retry:
                on_retry(e, attempt, delay)

            await sleep(delay)

    raise RuntimeError("Retry logic failed unexpectedly")
