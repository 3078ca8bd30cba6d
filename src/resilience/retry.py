"""
Bounded retry with exponential backoff.

The sleep function is injected so callers and tests control time.
Corruption and business-rule failures are never retried.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

import structlog

from ..shared.exceptions import CorruptionError, ValidationError

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

NON_RETRYABLE: Tuple[Type[BaseException], ...] = (CorruptionError, ValidationError)


@dataclass
class RetryPolicy:
    """Retry limits and backoff shape."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    attempt_timeout: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[Any]],
    policy: Optional[RetryPolicy] = None,
    sleep: Optional[Sleep] = None,
    operation_name: str = "operation"
) -> Any:
    """
    Run an operation, retrying failures with exponential backoff.

    Returns:
        The operation's result

    Raises:
        The last failure once attempts are exhausted, or any
        non-retryable failure immediately.
    """
    policy = policy or RetryPolicy()
    sleep = sleep or asyncio.sleep

    attempt = 1
    while True:
        try:
            if policy.attempt_timeout:
                return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout)
            return await operation()
        except NON_RETRYABLE:
            raise
        except Exception as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    "Retries exhausted",
                    operation_name=operation_name,
                    attempts=attempt,
                    error=str(e)
                )
                raise

            delay = policy.delay_for(attempt)
            logger.info(
                "Operation failed, scheduling retry",
                operation_name=operation_name,
                attempt=attempt,
                delay_seconds=delay,
                error=str(e)
            )
            await sleep(delay)
            attempt += 1
