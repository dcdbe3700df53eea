"""
Resilience utilities for CRM sync.

Provides:
- Retry logic with exponential backoff for transient provider failures
- Classification of retryable HTTP statuses
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3  # total tries, including the first
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (ConnectionError, TimeoutError)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based)."""
        return min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )


DEFAULT_RETRY_CONFIG = RetryConfig()


def call_with_retry(
    func: Callable[[], T],
    config: Optional[RetryConfig] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "",
) -> T:
    """
    Call func, retrying transient failures with exponential backoff.

    Args:
        func: Zero-argument callable
        config: Retry configuration
        should_retry: Predicate deciding whether an exception is transient.
                      Defaults to isinstance(e, config.retryable_exceptions).
        sleep: Sleep function (injected in tests)
        description: Name used in log messages

    Raises:
        The last exception once attempts are exhausted, or immediately for
        non-retryable errors.
    """
    cfg = config or DEFAULT_RETRY_CONFIG
    name = description or getattr(func, "__name__", "call")

    def _is_retryable(e: Exception) -> bool:
        if should_retry is not None:
            return should_retry(e)
        return isinstance(e, cfg.retryable_exceptions)

    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if not _is_retryable(e):
                raise
            if attempt >= cfg.max_attempts:
                logger.error(f"All {cfg.max_attempts} attempts exhausted for {name}: {e}")
                raise
            delay = cfg.delay_for(attempt)
            logger.warning(
                f"Retry {attempt}/{cfg.max_attempts - 1} for {name}: {e}. "
                f"Waiting {delay:.1f}s..."
            )
            sleep(delay)
            attempt += 1


def retry_sync(
    config: Optional[RetryConfig] = None,
    should_retry: Optional[Callable[[Exception], bool]] = None,
):
    """
    Decorator for sync functions with retry logic.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return call_with_retry(
                lambda: func(*args, **kwargs),
                config=config,
                should_retry=should_retry,
                sleep=time.sleep,
                description=func.__name__,
            )

        return wrapper
    return decorator


def is_retryable_status(status_code: int) -> bool:
    """
    Check if HTTP status code is retryable.

    Args:
        status_code: HTTP status code

    Returns:
        True if the error is transient and retryable
    """
    # 5xx server errors (except 501 Not Implemented)
    if status_code >= 500 and status_code != 501:
        return True

    # 429 Too Many Requests
    if status_code == 429:
        return True

    # 408 Request Timeout
    if status_code == 408:
        return True

    return False


# Pre-configured retry config for Google API calls
GOOGLE_API_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=10.0,
    retryable_exceptions=(
        ConnectionError,
        TimeoutError,
    ),
)
