"""
Retry helpers for vision-extraction calls.

Extraction providers (OpenAI, Mistral, OpenAI-compatible local servers) fail
transiently under rate limiting, overloaded backends and flaky networks. The
pipeline treats any error that survives these retries as terminal for the
document being analyzed, so the retry budget lives here and nowhere else.

Delays grow exponentially from ``base_delay`` and are capped at ``max_delay``.
Each delay is multiplied by a random factor in [0.5, 1.5) so that several
callers hitting the same limit don't retry in lockstep.

USAGE:
    from utils.retry import retry_on_transient_error, is_transient_network_error

    @retry_on_transient_error(is_retryable=is_transient_network_error, max_retries=3)
    def call_model():
        return client.chat.completions.create(...)
"""

import time
import random
from functools import wraps
from typing import Callable, Optional


# HTTP status codes that indicate the provider may succeed on a later attempt
TRANSIENT_HTTP_STATUS_CODES = {
    408,  # Request Timeout
    409,  # Conflict (OpenAI uses it for lock contention)
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}

TRANSIENT_NETWORK_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-indexed), with jitter."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay * (0.5 + random.random())


def retry_on_transient_error(
    is_retryable: Callable[[Exception], bool],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator that retries a function on transient errors with exponential backoff.

    Args:
        is_retryable: Returns True if the exception is worth another attempt.
                      Anything else is re-raised immediately.
        max_retries: Retries after the first attempt (total = max_retries + 1).
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound for a single delay, before jitter.
        on_retry: Called as on_retry(exc, attempt, delay) before sleeping;
                  attempt is 1-indexed.
        sleep: Sleep function, replaceable in tests.

    Raises:
        The last exception once retries are exhausted.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as exc:
                    if not is_retryable(exc) or attempt == max_retries:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    if on_retry:
                        on_retry(exc, attempt + 1, delay)
                    sleep(delay)
        return wrapper
    return decorator


def is_transient_network_error(exc: Exception) -> bool:
    """True for connection resets, refused connections and timeouts."""
    return isinstance(exc, TRANSIENT_NETWORK_EXCEPTIONS)


def is_transient_status(exc: Exception) -> bool:
    """True if the exception carries a retryable HTTP status code.

    Both the openai and mistralai SDKs expose ``status_code`` on their
    HTTP error types.
    """
    status = getattr(exc, "status_code", None)
    return status in TRANSIENT_HTTP_STATUS_CODES
