"""Retry with exponential backoff for cloud requests."""

import logging
import random
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger("lineageweaver.cloud.retry")

DEFAULT_RETRY_CONFIG = {
    "max_retries": 3,
    "initial_delay": 1.0,  # seconds
    "max_delay": 30.0,
    "backoff_factor": 2.0,
    "jitter": True,
}

RETRYABLE_STATUS_CODES = {429}


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retried operation has failed."""

    def __init__(self, message: str, original_error: Exception, attempts: int):
        super().__init__(message)
        self.original_error = original_error
        self.attempts = attempts


def calculate_delay(attempt: int, config: dict[str, Any]) -> float:
    """Delay before the next attempt: initial * factor^attempt, capped, +/-25% jitter."""
    delay = config["initial_delay"] * (config["backoff_factor"] ** attempt)
    delay = min(delay, config["max_delay"])
    if config["jitter"]:
        jitter_range = delay * 0.25
        delay = delay - jitter_range + random.random() * jitter_range * 2
    return delay


def is_retryable_error(error: Exception) -> bool:
    """Network failures, rate limiting and server errors are worth retrying."""
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return True

    status = getattr(error, "status_code", None)
    if status is not None:
        return status in RETRYABLE_STATUS_CODES or 500 <= status < 600

    message = str(error).lower()
    return any(word in message for word in ("network", "timeout", "connection"))


def retry_with_backoff(
    fn: Callable[[], Any],
    retry_on: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **options,
) -> Any:
    """
    Call fn until it succeeds or retries run out.

    Non-retryable errors propagate immediately. When every attempt fails a
    RetryExhaustedError wraps the last error.
    """
    config = {**DEFAULT_RETRY_CONFIG, **options}
    max_retries = config["max_retries"]
    should_retry = retry_on or is_retryable_error
    last_error: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            return fn()
        except Exception as e:
            last_error = e

            if attempt >= max_retries:
                break
            if not should_retry(e):
                raise

            delay = calculate_delay(attempt, config)
            logger.debug(f"Attempt {attempt + 1} failed ({e}); retrying in {delay:.2f}s")
            if on_retry:
                on_retry(attempt + 1, e, delay)
            sleep(delay)

    raise RetryExhaustedError(
        f"Operation failed after {max_retries + 1} attempts: {last_error}",
        original_error=last_error,
        attempts=max_retries + 1,
    )
