"""
Retry manager for executing async callables with exponential backoff.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from aircache.core.retry.policy import DEFAULT_RETRY_POLICY, RetryPolicy, RetryState
from aircache.utils.logging import get_logger

logger = get_logger("aircache.retry.manager")

T = TypeVar("T")


class RetryManager:
    """
    Wraps an async callable with retry logic based on a RetryPolicy.

    Examples:
        >>> manager = RetryManager()
        >>> data = await manager.execute(client.get_json, "/v0/meta/bases", policy=SOURCE_RETRY_POLICY)
    """

    def __init__(self, sleep: Callable[[float], Awaitable[Any]] | None = None):
        """
        Initialize RetryManager.

        Args:
            sleep: Coroutine used to wait between attempts (default: asyncio.sleep)
        """
        self._sleep = sleep or asyncio.sleep
        self.last_state: RetryState | None = None

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        policy: RetryPolicy | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Execute async function with retry logic.

        Args:
            func: Async function to execute
            *args: Positional arguments to pass to func
            policy: Retry policy (defaults to DEFAULT_RETRY_POLICY)
            operation: Name used in log messages
            **kwargs: Keyword arguments to pass to func

        Returns:
            Result of successful execution

        Raises:
            Exception: The last exception once retries are exhausted or the
                policy declines to retry
        """
        policy = policy or DEFAULT_RETRY_POLICY
        state = RetryState(operation=operation or getattr(func, "__name__", "operation"))
        self.last_state = state

        for attempt in range(policy.max_attempts + 1):
            state.total_attempts = attempt + 1
            try:
                logger.debug(f"Executing {state.operation} (attempt {attempt + 1}/{policy.max_attempts + 1})")
                result = await func(*args, **kwargs)
            except Exception as e:
                if not policy.should_retry(e, attempt):
                    if state.total_attempts > 1:
                        logger.error(
                            f"{state.operation} failed after {state.total_attempts} attempts "
                            f"({state.waited:.2f}s waiting): {e}"
                        )
                    raise

                delay = policy.get_delay(attempt)
                state.delays.append(delay)
                logger.warning(f"{state.operation} attempt {attempt + 1} failed: {e}. Retrying in {delay:.2f}s...")
                await self._sleep(delay)
            else:
                state.succeeded = True
                if state.total_attempts > 1:
                    logger.info(
                        f"{state.operation} succeeded after {state.total_attempts} attempts "
                        f"({state.waited:.2f}s waiting)"
                    )
                return result

        # unreachable: the last attempt either returns or raises
        raise RuntimeError(f"Retry logic error for {state.operation}")
