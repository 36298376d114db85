"""
WhatsApp Command Bot - Retry Service

This module implements retry logic with exponential backoff and jitter
for handling transient failures when talking to the WhatsApp bridge.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Retry strategy types."""
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    FIXED_DELAY = "fixed_delay"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    jitter: bool = True
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class RetryService:
    """
    Executes coroutines with retry logic.

    Supports multiple retry strategies:
    - Exponential backoff with jitter
    - Linear backoff
    - Fixed delay
    """

    def __init__(self, config: RetryConfig = None):
        self.config = config or RetryConfig()

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for the given attempt number.

        Args:
            attempt: Current attempt number (1-based)

        Returns:
            Delay in seconds
        """
        if self.config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.config.base_delay * (
                self.config.exponential_base ** (attempt - 1)
            )
        elif self.config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.config.base_delay * attempt
        else:  # FIXED_DELAY
            delay = self.config.base_delay

        delay = min(delay, self.config.max_delay)

        # +/-25% random variation
        if self.config.jitter:
            jitter_amount = delay * 0.25
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay

    def _is_retryable_exception(self, exception: Exception) -> bool:
        return isinstance(exception, self.config.retryable_exceptions)

    async def execute_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with retry logic.

        Raises:
            RetryError: When all attempts are exhausted
        """
        last_exception = None

        for attempt in range(1, self.config.max_attempts + 1):
            try:
                logger.debug(f"Retry attempt {attempt}/{self.config.max_attempts}")
                result = await func(*args, **kwargs)

                if attempt > 1:
                    logger.info(f"Function succeeded on attempt {attempt}")

                return result

            except Exception as e:
                last_exception = e

                if not self._is_retryable_exception(e):
                    logger.debug(f"Non-retryable exception: {type(e).__name__}")
                    raise

                if attempt == self.config.max_attempts:
                    logger.error(
                        f"All {self.config.max_attempts} retry attempts failed. "
                        f"Last error: {e}"
                    )
                    break

                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Attempt {attempt} failed with {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.2f}s"
                )

                await asyncio.sleep(delay)

        raise RetryError(
            f"Function failed after {self.config.max_attempts} attempts",
            last_exception,
            self.config.max_attempts
        )


def get_bridge_retry_service(max_attempts: int = 3, base_delay: float = 1.0) -> RetryService:
    """Get retry service configured for WhatsApp bridge calls."""
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=20.0,
        strategy=RetryStrategy.EXPONENTIAL_BACKOFF,
        jitter=True,
        retryable_exceptions=(
            requests.ConnectionError,
            requests.Timeout,
            ConnectionError,
            TimeoutError,
        )
    )
    return RetryService(config)
