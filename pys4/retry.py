"""Retry policy shared by listing and transfer code."""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from .exceptions import S4Error, S4RateLimitError
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_MAX_RETRY_DELAY, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a failed call is retried.

    Only errors flagged ``retryable`` (network, rate limit, 5xx) are retried;
    everything else propagates on the first attempt.

    Examples:
        >>> policy = RetryPolicy(max_retries=2, base_delay=0.1)
        >>> policy.call(lambda: 42, description="answer")
        42
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    """Retries after the first attempt (total attempts = max_retries + 1)"""

    base_delay: float = DEFAULT_RETRY_DELAY
    """Delay before the first retry in seconds"""

    max_delay: float = DEFAULT_MAX_RETRY_DELAY
    """Upper bound for a single delay"""

    jitter: float = 0.25
    """Relative jitter applied to each delay (+/- 25% by default)"""

    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)
    """Sleep function (replaceable in tests)"""

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, exception: BaseException, attempt: int) -> bool:
        """Determine if a call should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the call should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False
        return isinstance(exception, S4Error) and exception.retryable

    def delay_for(self, attempt: int, exception: Optional[BaseException] = None) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)
            exception: The error being retried; a rate limit with a
                Retry-After hint overrides the curve

        Returns:
            Delay in seconds
        """
        if isinstance(exception, S4RateLimitError) and exception.retry_after:
            return min(exception.retry_after, self.max_delay)

        base_delay = min(self.base_delay * (2**attempt), self.max_delay)
        # Add jitter to avoid thundering herd
        jitter = base_delay * self.jitter * (2 * random.random() - 1)
        return max(0.0, base_delay + jitter)

    def call(self, func: Callable[[], T], description: str = "operation") -> T:
        """Run ``func`` until it succeeds or retries are exhausted.

        Args:
            func: Zero-argument callable
            description: Label used in debug logs

        Returns:
            Whatever ``func`` returns

        Raises:
            The last exception raised by ``func``
        """
        attempt = 0
        while True:
            try:
                return func()
            except S4Error as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt, e)
                logger.debug(
                    "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                    description,
                    attempt + 1,
                    self.max_attempts,
                    delay,
                    e,
                )
                self.sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_retries=0)
