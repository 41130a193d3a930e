"""
Retry utilities with exponential backoff for transient network errors.

Cloud APIs (Google Drive, QuickBooks Online) fail temporarily on rate limits
(HTTP 429), overloaded servers (HTTP 5xx) and dropped connections. Such calls
are retried with an exponentially growing delay, randomized by a jitter
factor of 0.5-1.5 so that concurrent clients do not retry in lockstep.

The decorator works on both plain functions and coroutine functions. For
coroutine functions the wait uses asyncio.sleep, so a retrying request never
blocks other requests on the event loop.

USAGE:
------
    from utils.retry import retry_on_transient_error

    def is_retryable(exc):
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code in TRANSIENT_HTTP_STATUS_CODES
        return is_transient_network_error(exc)

    @retry_on_transient_error(is_retryable=is_retryable, max_retries=5)
    async def call_my_api():
        return await client.get(url)
"""

import asyncio
import random
import time
from functools import wraps
from typing import Callable, Optional


def _backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number attempt+1, with jitter applied."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay * (0.5 + random.random())


def retry_on_transient_error(
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
):
    """
    Decorator that retries a function on transient errors with exponential backoff.

    Args:
        is_retryable: Returns True if an exception is transient and the call
                      should be tried again. Non-retryable exceptions are
                      raised immediately.
        max_retries: Maximum number of retry attempts after the initial try.
                     Default is 5, meaning up to 6 total attempts.
        base_delay: Initial delay in seconds, doubled for each further retry.
        max_delay: Cap on the delay in seconds, before jitter is applied.
        on_retry: Optional callback (exc, attempt, delay) invoked before each
                  retry, typically for logging.

    Returns:
        A decorator that wraps sync or async functions with retry logic.

    Raises:
        The last exception encountered if all retries are exhausted, or
        immediately if the exception is not retryable.
    """

    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                for attempt in range(max_retries + 1):
                    try:
                        return await func(*args, **kwargs)
                    except Exception as exc:
                        if not is_retryable(exc) or attempt == max_retries:
                            raise
                        delay = _backoff_delay(attempt, base_delay, max_delay)
                        if on_retry:
                            on_retry(exc, attempt + 1, delay)
                        await asyncio.sleep(delay)
            return async_wrapper

        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    if not is_retryable(exc) or attempt == max_retries:
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_delay)
                    if on_retry:
                        on_retry(exc, attempt + 1, delay)
                    time.sleep(delay)
        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Common retry condition helpers
# ---------------------------------------------------------------------------

# Standard HTTP status codes that indicate transient server issues
TRANSIENT_HTTP_STATUS_CODES = {
    429,  # Too Many Requests (rate limited)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}

# Standard network exception types that are typically transient
TRANSIENT_NETWORK_EXCEPTIONS = (
    ConnectionError,      # Connection refused, reset, etc.
    TimeoutError,         # Operation timed out
    OSError,              # Low-level I/O errors (includes socket errors)
)


def is_transient_network_error(exc: Exception) -> bool:
    """Check if an exception is a transient network error."""
    return isinstance(exc, TRANSIENT_NETWORK_EXCEPTIONS)


def log_retry(exc: Exception, attempt: int, delay: float) -> None:
    """Default on_retry callback: report the retry through the app log."""
    from ledgerdesk import LedgerDesk

    status = getattr(getattr(exc, 'resp', None), 'status', None)
    if status is None:
        status = getattr(getattr(exc, 'response', None), 'status_code', None)
    error_desc = f"HTTP {status}" if status else type(exc).__name__
    LedgerDesk.log(f"  [Retry] {error_desc} on attempt {attempt}, retrying in {delay:.1f}s...")
