"""
Bounded retry with exponential backoff and jitter for provider calls.
Delay before attempt n+1: base * 2**(n-1), +/- 10%.
"""

import time
import random
import logging
from typing import Callable, TypeVar

from mediapress.core.constants import PROVIDER_MAX_ATTEMPTS, BACKOFF_BASE_SEC, BACKOFF_JITTER
from mediapress.core.error_codes import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay after the given (1-based) failed attempt."""
    delay = base_delay * (2 ** (attempt - 1))
    return delay * (1 + random.uniform(-BACKOFF_JITTER, BACKOFF_JITTER))


def call_with_retry(fn: Callable[[], T], *,
                    max_attempts: int = PROVIDER_MAX_ATTEMPTS,
                    base_delay: float = BACKOFF_BASE_SEC,
                    label: str = "provider call",
                    sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Call fn until it succeeds or max_attempts is reached.

    Only ProviderError with retryable=True is retried. The error that finally
    escapes carries the number of attempts made in its `attempts` attribute.
    Any other exception propagates on the first occurrence.
    """
    max_attempts = max(1, max_attempts)
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except ProviderError as e:
            e.attempts = attempt
            if not e.retryable or attempt >= max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay)
            logger.warning("%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                           label, e.message, delay, attempt, max_attempts)
            sleep(delay)

    # loop always returns or raises
    raise AssertionError("unreachable")
