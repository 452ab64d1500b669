"""
Retry utilities with exponential backoff for provider API calls.

Only transient failures are retried: network errors and provider responses
with a retryable status code. Auth failures are never retried here; the
backfill engine owns the refresh-and-retry path for those.
"""
import functools
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Type

import requests

from klaviyo_hub.connectors.base import AuthError, KlaviyoAPIError
from klaviyo_hub.utils.logger import log


@dataclass
class RetryStats:
    """Tracks retry statistics for a single operation."""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    last_error: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        """Record a retry attempt."""
        self.attempts += 1
        self.total_delay_seconds += delay
        if error:
            error_str = f"{type(error).__name__}: {str(error)}"
            self.last_error = error_str
            self.errors.append(error_str)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            "attempts": self.attempts,
            "total_delay_seconds": round(self.total_delay_seconds, 2),
            "success": self.success,
            "last_error": self.last_error,
            "errors": self.errors[:5]  # Cap at 5 errors
        }


RETRYABLE_STATUS_CODES: Tuple[int, ...] = (429, 500, 502, 503, 504)

DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for exponential backoff.

    Args:
        attempt: Current attempt number (1-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap
        exponential_base: Base for exponential calculation
        jitter: Add 0-25% randomness

    Returns:
        Delay in seconds
    """
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay += delay * random.uniform(0, 0.25)
    return delay


def is_retryable_error(
    error: Exception,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    retryable_status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES
) -> bool:
    """Check if an error is worth another attempt."""
    if isinstance(error, AuthError):
        return False
    if isinstance(error, KlaviyoAPIError):
        return error.status_code in retryable_status_codes
    return isinstance(error, retryable_exceptions)


def retry_sync(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = DEFAULT_RETRYABLE_EXCEPTIONS,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Decorator for retrying provider calls with exponential backoff.

    Usage:
        @retry_sync(max_attempts=3)
        def fetch_page():
            ...
    """
    def decorator(func: Callable):
        last_stats = [None]

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            stats = RetryStats()
            last_stats[0] = stats

            for attempt in range(1, max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    stats.record_attempt()
                    stats.success = True
                    if attempt > 1:
                        log.info(
                            f"{func.__name__} succeeded on attempt {attempt} "
                            f"after {stats.total_delay_seconds:.1f}s total delay"
                        )
                    return result

                except Exception as e:
                    if attempt >= max_attempts or not is_retryable_error(e, retryable_exceptions):
                        stats.record_attempt(error=e)
                        raise

                    delay = calculate_backoff(
                        attempt,
                        base_delay=base_delay,
                        max_delay=max_delay,
                        exponential_base=exponential_base
                    )
                    stats.record_attempt(error=e, delay=delay)

                    log.warning(
                        f"{func.__name__} attempt {attempt} failed: {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )

                    if on_retry:
                        on_retry(attempt, e, delay)

                    sleep(delay)

            raise RuntimeError("Retry exhausted")

        wrapper.get_retry_stats = lambda: last_stats[0]
        return wrapper

    return decorator
