"""Retry utilities for registry requests with linear backoff"""

import logging
import time
from enum import Enum
from typing import Callable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableErrorType(Enum):
    """Types of errors that should trigger retries"""

    NETWORK = "network"  # Connection errors, timeouts
    TEMPORARY = "temporary"  # 5xx errors
    PERMANENT = "permanent"  # 4xx errors, including auth and rate limiting


def is_retryable_error(error: Exception) -> Tuple[bool, RetryableErrorType]:
    """Determine if an error is retryable and what type it is

    Any error carrying a 4xx `status_code` is final. Errors without a status code
    are network failures (connection refused, timeout) and are retried, as is
    every other status.

    Args:
        error: The exception that occurred

    Returns:
        Tuple of (is_retryable, error_type)
    """
    status_code = getattr(error, "status_code", None)

    if status_code is None:
        return True, RetryableErrorType.NETWORK

    if 400 <= status_code < 500:
        return False, RetryableErrorType.PERMANENT

    return True, RetryableErrorType.TEMPORARY


def backoff_delay(throttle_ms: int, attempt: int) -> float:
    """Delay in seconds before retry number `attempt` (1-based): throttle * attempt"""
    return throttle_ms * attempt / 1000.0


def retry_operation(
    operation: Callable[[], T],
    max_retries: int = 3,
    throttle_ms: int = 1000,
    operation_name: str = "operation",
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Run an operation, retrying it with linear backoff

    The first attempt runs immediately; retry N waits `throttle_ms * N`
    milliseconds. Non-retryable errors are raised at once, and once the budget
    is spent the last error is raised.

    Args:
        operation: Callable to retry
        max_retries: Number of retries after the first attempt
        throttle_ms: Base delay in milliseconds
        operation_name: Name for logging purposes
        sleep: Sleep function (defaults to time.sleep)

    Returns:
        Result of the operation
    """
    sleep = sleep or time.sleep
    last_error: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        if attempt > 0:
            delay = backoff_delay(throttle_ms, attempt)
            logger.debug(f"Retrying {operation_name} in {delay:.2f}s (attempt {attempt + 1}/{max_retries + 1})")
            sleep(delay)

        try:
            result = operation()
            if attempt > 0:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}")
            return result
        except Exception as e:
            last_error = e
            is_retryable, error_type = is_retryable_error(e)

            if not is_retryable:
                logger.debug(f"{operation_name} failed with non-retryable error ({error_type.value}): {e}")
                raise

            if attempt >= max_retries:
                logger.warning(
                    f"{operation_name} failed after {max_retries + 1} attempts. "
                    f"Last error ({error_type.value}): {e}"
                )
                raise

            logger.debug(
                f"{operation_name} failed on attempt {attempt + 1}/{max_retries + 1} ({error_type.value} error: {e})"
            )

    # Only reachable with a negative retry budget
    if last_error:
        raise last_error
    raise ValueError(f"max_retries must be non-negative, got {max_retries}")
