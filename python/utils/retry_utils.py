"""Retry utilities for Kubernetes API reads with exponential backoff"""

import logging
import random
import time
from enum import Enum
from functools import wraps
from typing import Callable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryableErrorType(Enum):
    """Types of errors that should trigger retries"""

    NETWORK = "network"  # Connection errors, timeouts
    TEMPORARY = "temporary"  # 5xx errors, rate limiting
    PERMANENT = "permanent"  # 4xx errors (except rate limiting), auth failures


NETWORK_INDICATORS = (
    "connection",
    "timeout",
    "timed out",
    "network",
    "refused",
    "unreachable",
    "reset",
    "broken pipe",
    "no route to host",
    "temporary failure",
)


def is_retryable_error(error: Exception, error_message: str = "") -> Tuple[bool, RetryableErrorType]:
    """Determine if an error is retryable and what type it is

    Args:
        error: The exception that occurred
        error_message: Optional error message string

    Returns:
        Tuple of (is_retryable, error_type)
    """
    # Kubernetes ApiException carries the HTTP status
    status = getattr(error, "status", None)
    if isinstance(status, int) and status > 0:
        if status == 429 or status >= 500:
            return True, RetryableErrorType.TEMPORARY
        return False, RetryableErrorType.PERMANENT

    combined = f"{error} {error_message}".lower()

    if any(indicator in combined for indicator in NETWORK_INDICATORS):
        return True, RetryableErrorType.NETWORK

    if "429" in combined or "too many requests" in combined:
        return True, RetryableErrorType.TEMPORARY

    # Unknown errors are not retried; reads are cheap to re-run by hand
    return False, RetryableErrorType.PERMANENT


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_errors: Optional[List[RetryableErrorType]] = None,
) -> Callable:
    """Decorator for retrying functions with exponential backoff

    Only exceptions are retried; a returned value (including None) is final.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay in seconds before first retry (default: 1.0)
        max_delay: Maximum delay between retries in seconds (default: 30.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add random jitter to spread retries (default: True)
        retryable_errors: List of error types to retry (None = retry all retryable types)

    Returns:
        Decorator function
    """
    if retryable_errors is None:
        retryable_errors = [RetryableErrorType.NETWORK, RetryableErrorType.TEMPORARY]

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{func.__name__} succeeded on attempt {attempt + 1}")
                    return result
                except Exception as e:
                    is_retryable, error_type = is_retryable_error(e)

                    if not is_retryable or error_type not in retryable_errors:
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries + 1} attempts. "
                            f"Last error ({error_type.value}): {e}"
                        )
                        raise

                    delay = min(initial_delay * (exponential_base**attempt), max_delay)
                    if jitter:
                        jitter_amount = delay * 0.1  # 10% jitter
                        delay = max(0.1, delay + random.uniform(-jitter_amount, jitter_amount))

                    logger.warning(
                        f"{func.__name__} failed on attempt {attempt + 1}/{max_retries + 1} "
                        f"({error_type.value} error: {e}). "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
