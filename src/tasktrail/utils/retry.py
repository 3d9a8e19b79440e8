"""
Retry helper for transient store failures.

Standard retry loop with exponential backoff and jitter. Only errors the
caller marks as transient are retried; everything else propagates at once.
"""

import logging
import random
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError

from ..errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientStoreError, OperationalError)


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = 3,
    base_delay: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Retry a function with exponential backoff and jitter.

    Args:
        func: Callable to retry
        max_retries: Maximum number of attempts
        base_delay: Initial delay in seconds
        retry_on: Exception types treated as transient
        sleep: Sleep function, replaceable in tests

    Returns:
        Result of func() if successful

    Raises:
        Last exception if all retries exhausted
    """
    for attempt in range(max_retries):
        try:
            return func()
        except retry_on as e:
            if attempt == max_retries - 1:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, base_delay)
            logger.warning(
                "Transient failure (attempt %d/%d): %s; retrying in %.2fs",
                attempt + 1, max_retries, e, delay,
            )
            sleep(delay)
    raise RuntimeError("retry_with_backoff called with max_retries < 1")
