"""Retry primitives with exponential backoff.

Shared by background jobs for the few operations that are worth retrying,
most importantly the final catalog write of a transcode.
"""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 300.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` failed."""
        return attempt < self.max_attempts


# Default retry configurations for different operation types
RETRY_CONFIGS = {
    "catalog_write": RetryConfig(max_attempts=5, initial_delay=1.0, max_delay=30.0, backoff_multiplier=2),
    "source_download": RetryConfig(max_attempts=3, initial_delay=2.0, max_delay=30.0, backoff_multiplier=2),
    "default": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=60.0, backoff_multiplier=2),
}


def get_retry_config(name: str) -> RetryConfig:
    return RETRY_CONFIGS.get(name, RETRY_CONFIGS["default"])


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = (),
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> T:
    """Run ``operation`` until it succeeds or ``config.max_attempts`` is spent.

    The last exception is re-raised once attempts are exhausted. Exceptions
    matching ``give_up_on`` are re-raised immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if isinstance(exc, give_up_on) or not config.should_retry(attempt):
                raise
            delay = config.calculate_delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{config.max_attempts}), "
                f"retrying in {delay:.1f}s",
                extra={"attempt": attempt, "error": str(exc)},
            )
            if on_retry is not None:
                await on_retry(attempt, exc)
            await sleep(delay)
            attempt += 1
