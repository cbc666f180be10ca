"""
Retry with exponential backoff and jitter for upstream fetches.

retry_async re-invokes a coroutine function while it raises one of the
configured exceptions. When attempts run out it re-raises the last error,
or returns the caller's fallback value when one is given.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_FALLBACK = object()


@dataclass(frozen=True)
class RetryConfig:
    """max_retries counts retries, so a call makes at most max_retries + 1 attempts."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.3
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)

    @property
    def attempts(self) -> int:
        return self.max_retries + 1


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Backoff before the retry that follows a failed attempt (0-based)."""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    return delay + random.uniform(0, delay * config.jitter_factor)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    fallback=_NO_FALLBACK,
    **kwargs,
) -> T:
    """
    Await func(*args, **kwargs), retrying retryable failures.

    Args:
        func: Coroutine function to call
        config: Retry configuration (defaults to RetryConfig())
        fallback: Returned instead of raising once every attempt has failed

    Raises:
        The last retryable exception when no fallback is given; any other
        exception immediately
    """
    config = config or RetryConfig()
    name = getattr(func, "__qualname__", repr(func))

    for attempt in range(config.attempts):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt + 1 == config.attempts:
                logger.warning(
                    f"All {config.attempts} attempts failed for {name}: {e}",
                    extra={
                        "function": name,
                        "attempts": config.attempts,
                        "error_type": type(e).__name__,
                    },
                )
                if fallback is _NO_FALLBACK:
                    raise
                return fallback

            delay = calculate_delay(attempt, config)
            logger.info(
                f"Attempt {attempt + 1}/{config.attempts} failed for {name}, "
                f"retrying in {delay:.2f}s: {e}",
                extra={"function": name, "attempt": attempt + 1, "delay_seconds": delay},
            )
            await asyncio.sleep(delay)

    raise RuntimeError("retry_async called with a negative max_retries")
