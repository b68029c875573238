"""Bounded retry with exponential backoff for backend and provider I/O."""

import time
import random
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar, Optional
from botocore.exceptions import ClientError, ConnectTimeoutError, EndpointConnectionError, ReadTimeoutError
from stackshift.utils.errors import ErrorHandler, TransientBackendError
from stackshift.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class RetryStrategy:
    """Retries transient failures with exponential backoff.

    Only timeouts and throttling are retried. Everything else, configuration
    and compatibility errors included, propagates on the first attempt.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        io_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize retry strategy.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            io_timeout: Seconds a single call may take before it counts as a
                transient failure; None disables the bound
            sleep: Function used to wait between attempts
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.io_timeout = io_timeout
        self.sleep = sleep
        # One worker keeps timed-out calls ordered ahead of their retries
        self._worker: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_config(cls, retry_config, io_timeout: Optional[float] = None) -> "RetryStrategy":
        """Build a strategy from a RetryConfig model."""
        return cls(
            max_retries=retry_config.max_retries,
            base_delay=retry_config.base_delay,
            max_delay=retry_config.max_delay,
            exponential_base=retry_config.exponential_base,
            jitter=retry_config.jitter,
            io_timeout=io_timeout,
        )

    def is_transient(self, error: Exception) -> bool:
        """Whether an error is a timeout/throttle that may succeed on retry."""
        if isinstance(error, TransientBackendError):
            return True
        if isinstance(error, (ConnectionError, TimeoutError, EndpointConnectionError,
                              ConnectTimeoutError, ReadTimeoutError)):
            return True
        if isinstance(error, ClientError):
            return ErrorHandler.error_code(error) in ErrorHandler.TRANSIENT_ERROR_CODES
        return False

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The exception that occurred
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is transient and max retries not exceeded
        """
        if attempt >= self.max_retries:
            return False
        return self.is_transient(error)

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

        # Random value between 0 and 10% of delay
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def call_with_timeout(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run a single call, bounded by io_timeout.

        Raises:
            TransientBackendError: If the call does not finish in time
        """
        if self.io_timeout is None:
            return func(*args, **kwargs)

        if self._worker is None:
            self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix='stackshift-io')

        future = self._worker.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.io_timeout)
        except FutureTimeoutError:
            name = getattr(func, '__name__', repr(func))
            raise TransientBackendError(f"{name} timed out after {self.io_timeout}s")

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
            The last exception if it is not transient or retries are exhausted
        """
        return self._execute(self.call_with_timeout, func, args, kwargs)

    def retry_without_timeout(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Retry logic for calls that enforce their own bound, such as lock waits."""
        return self._execute(lambda f, *a, **kw: f(*a, **kw), func, args, kwargs)

    def _execute(self, call, func, args, kwargs):
        attempt = 0
        while True:
            try:
                result = call(func, *args, **kwargs)
                if attempt > 0:
                    logger.info(f"Operation succeeded after {attempt} retries")
                return result

            except Exception as e:
                if not self.should_retry(e, attempt):
                    if self.is_transient(e):
                        logger.error(f"All {self.max_retries} retry attempts exhausted: {e}")
                    else:
                        logger.debug(f"Error is not retryable: {e}")
                    raise

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries + 1} failed: "
                    f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                )
                self.sleep(delay)
                attempt += 1

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for calls that are still running on the timeout worker.

        A call that timed out keeps running in the background. The worker
        runs one call at a time, so a no-op queued behind it finishes only
        once every earlier call has.

        Returns:
            False if the worker is still busy after ``timeout`` seconds
        """
        if self._worker is None:
            return True

        marker = self._worker.submit(lambda: None)
        try:
            marker.result(timeout=timeout)
        except FutureTimeoutError:
            return False
        return True

    def shutdown(self) -> None:
        """Stop the timeout worker thread, if one was started."""
        if self._worker is not None:
            self._worker.shutdown(wait=False)
            self._worker = None
