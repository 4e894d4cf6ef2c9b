"""Retry strategy with exponential backoff for AWS operations."""

import time
import random
from typing import Callable, TypeVar, Optional
from botocore.exceptions import ClientError
from amiforge.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Implements exponential backoff retry strategy for transient errors."""

    # AWS error codes that should trigger a retry
    RETRYABLE_ERROR_CODES = {
        'RequestTimeout',
        'RequestLimitExceeded',
        'Throttling',
        'ThrottlingException',
        'ServiceUnavailable',
        'Unavailable',
        'InternalError',
        'InternalFailure',
    }

    # Network-related exceptions that should trigger a retry
    RETRYABLE_EXCEPTIONS = (
        ConnectionError,
        TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retry_on: Optional[Callable[[Exception], bool]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            retry_on: Predicate selecting retryable errors; defaults to
                transient AWS and network errors
            sleep: Function used to wait between attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retry_on = retry_on or self.is_transient
        self.sleep = sleep

    @classmethod
    def is_transient(cls, error: Exception) -> bool:
        """Default retry predicate: throttling, service and network errors."""
        if isinstance(error, cls.RETRYABLE_EXCEPTIONS):
            return True

        if isinstance(error, ClientError):
            code = error.response.get('Error', {}).get('Code', '')
            return code in cls.RETRYABLE_ERROR_CODES

        return False

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is retryable and max retries not exceeded
        """
        if attempt >= self.max_retries:
            return False
        return self.retry_on(error)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Jitter is a random value between 0 and 10% of delay
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def execute_with_retry(
        self,
        func: Callable[..., T],
        *args,
        **kwargs
    ) -> T:
        """Execute a function with retry logic.

        Args:
            func: Function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result of the function call

        Raises:
            The last exception if all retries are exhausted
        """
        attempt = 0
        while True:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, attempt):
                    if attempt >= self.max_retries and self.retry_on(e):
                        logger.error(f"All {self.max_retries} retry attempts exhausted")
                    else:
                        logger.debug(f"Error is not retryable: {e}")
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{self._get_error_info(e)}. Retrying in {delay:.2f}s..."
                )
                self.sleep(delay)
                attempt += 1
                continue

            if attempt > 0:
                logger.info(f"Operation succeeded after {attempt} retries")
            return result

    def _get_error_info(self, error: Exception) -> str:
        """Extract useful error information for logging.

        Args:
            error: The exception

        Returns:
            Human-readable error description
        """
        if isinstance(error, ClientError):
            code = error.response.get('Error', {}).get('Code', 'Unknown')
            error_message = error.response.get('Error', {}).get('Message', str(error))
            return f"{code}: {error_message}"

        return f"{type(error).__name__}: {str(error)}"

    @classmethod
    def for_budget(
        cls,
        budget: float,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        **kwargs
    ) -> 'RetryStrategy':
        """Build a strategy whose cumulative backoff stays within a time budget.

        Args:
            budget: Total seconds of waiting allowed across all retries
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            **kwargs: Passed through to the constructor

        Returns:
            RetryStrategy with max_retries derived from the budget
        """
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")

        retries = 0
        spent = 0.0
        while True:
            delay = min(base_delay * (2.0 ** retries), max_delay)
            if spent + delay > budget:
                break
            spent += delay
            retries += 1
        return cls(
            max_retries=retries,
            base_delay=base_delay,
            max_delay=max_delay,
            exponential_base=2.0,
            jitter=False,
            **kwargs
        )
