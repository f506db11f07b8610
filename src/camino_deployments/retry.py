"""Retry helpers with bounded exponential backoff."""

import logging
import time
from typing import Callable, Optional, TypeVar

from .constants import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def with_retry(
    func: Callable[[], T],
    *,
    should_retry: Callable[[Exception], bool],
    attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    sleep: Callable[[float], None] = time.sleep,
    description: Optional[str] = None,
) -> T:
    """
    Call func until it succeeds or the attempt budget is spent.

    Args:
        func: Operation to run
        should_retry: Predicate deciding whether an exception is transient
        attempts: Total attempts, including the first
        base_delay: Delay after the first failure, doubled on each retry
        max_delay: Upper bound for a single delay
        sleep: Sleep function (injectable for tests)
        description: Label used in log messages

    Returns:
        func's result

    Raises:
        The last exception raised by func, once attempts are exhausted or it
        is not retryable
    """
    label = description or getattr(func, "__name__", "operation")
    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if attempt >= attempts or not should_retry(e):
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label,
                attempt,
                attempts,
                e,
                delay,
            )
            sleep(delay)
            attempt += 1
