"""Bounded retry helper shared by components that touch flaky collaborators."""

import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from dialer.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry_call(
    fn: Callable[[], T],
    *,
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    operation: Optional[str] = None,
    **log_context,
) -> T:
    """
    Call `fn` until it succeeds or `attempts` is reached.

    Args:
        fn: zero-argument callable
        attempts: maximum number of calls (>= 1)
        delay: seconds to wait before the second attempt
        backoff: multiplier applied to the delay after each failure (1.0 = fixed)
        retry_on: exception classes considered transient; anything else propagates immediately
        sleep: injectable sleep, mainly for tests
        operation: name used in log events

    Raises:
        RetryExhausted: all attempts failed with a retryable error
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            logger.warning(
                "retry_attempt_failed",
                operation=operation,
                attempt=attempt,
                attempts=attempts,
                error=str(e),
                **log_context,
            )
            if attempt == attempts:
                raise RetryExhausted(attempts, e) from e
            sleep(wait)
            wait *= backoff

    # unreachable: the loop either returns or raises
    raise AssertionError("retry loop exited without result")
