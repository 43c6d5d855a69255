"""
Retry policy for rate-limited CRM calls.

A single RetryPolicy is parameterized per call site with the attempt
ceiling, a predicate deciding which failures are worth retrying and the
backoff between attempts (linear by default: base_delay x attempt).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.3


def _never_retry(error: Exception) -> bool:
    return False


@dataclass
class RetryPolicy:
    """
    Attempt an async operation up to ``max_attempts`` times.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Seconds of backoff per completed attempt
        is_retryable: Predicate deciding whether an exception warrants
                      another attempt
        sleep: Awaitable sleep function, replaceable in tests
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY
    is_retryable: Callable[[Exception], bool] = _never_retry
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def backoff(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * attempt

    async def run(
        self, operation: Callable[[], Awaitable[T]], operation_name: str = "operation"
    ) -> T:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument callable returning an awaitable
            operation_name: Label used in log messages

        Returns:
            The operation's result from the first successful attempt

        Raises:
            The last exception raised by ``operation`` once it is not
            retryable or the attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.is_retryable(e):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"{operation_name} failed (attempt {attempt}/"
                    f"{self.max_attempts}): {e}. Retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
                attempt += 1
