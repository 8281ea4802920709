"""
Retry policy configuration for remote calls and store connections.

Exponential backoff with jitter for transient failures.
"""

import asyncio
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from aircache.exceptions import SourceRequestError, StoreUnavailableError


@dataclass
class RetryPolicy:
    """
    Configuration for retry behavior when an operation fails.

    Examples:
        >>> policy = RetryPolicy(max_attempts=3)

        >>> policy = RetryPolicy(
        ...     max_attempts=5,
        ...     initial_delay=2.0,
        ...     max_delay=60.0,
        ...     retryable_exceptions=(ConnectionError, TimeoutError),
        ... )
    """

    # Maximum number of retry attempts (total executions = max_attempts + 1)
    max_attempts: int = 3

    # Initial delay before first retry (seconds)
    initial_delay: float = 1.0

    # Maximum delay between retries (seconds)
    max_delay: float = 30.0

    # Exponential backoff base (delay = initial_delay * base^attempt)
    exponential_base: float = 2.0

    # Random jitter of ±25% of the delay
    jitter: bool = True

    # Only retry these exception types (None = retry all exceptions)
    retryable_exceptions: tuple[type[Exception], ...] | None = None

    # Custom retry condition, takes precedence over retryable_exceptions
    # Signature: (exception: Exception, attempt: int) -> bool
    retry_condition: Callable[[Exception, int], bool] | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be > 0")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """
        Determine if we should retry after this exception.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if we should retry, False otherwise
        """
        if attempt >= self.max_attempts:
            return False
        if self.retry_condition is not None:
            return self.retry_condition(exception, attempt)
        if self.retryable_exceptions is not None:
            return isinstance(exception, self.retryable_exceptions)
        return True

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry using exponential backoff.

        delay = min(initial_delay * base^attempt * jitter, max_delay)

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = self.initial_delay * (self.exponential_base**attempt)
        if self.jitter:
            delay *= random.uniform(0.75, 1.25)
        # max_delay is a hard upper bound, applied after jitter
        return min(delay, self.max_delay)


@dataclass
class RetryState:
    """Attempt bookkeeping for one retried operation, read by the manager's log lines."""

    operation: str
    total_attempts: int = 0
    delays: list[float] = field(default_factory=list)
    succeeded: bool = False

    @property
    def waited(self) -> float:
        return sum(self.delays)


def _is_transient_source_error(exception: Exception, attempt: int) -> bool:
    if isinstance(exception, SourceRequestError):
        return exception.retryable
    return isinstance(exception, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError))


# Pre-configured policies

DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=30.0)

# Remote API: rate limits (429) and 5xx are retried, other client errors are not
SOURCE_RETRY_POLICY = RetryPolicy(
    max_attempts=5,
    initial_delay=1.0,
    max_delay=60.0,
    retry_condition=_is_transient_source_error,
)

# Store connection setup at startup
STORE_CONNECT_RETRY_POLICY = RetryPolicy(
    max_attempts=5,
    initial_delay=0.5,
    max_delay=10.0,
    retryable_exceptions=(StoreUnavailableError, ConnectionError, OSError, TimeoutError),
)
