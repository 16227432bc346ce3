"""
Bounded retry with exponential backoff for remote backend calls.
"""

import time
from typing import Callable, TypeVar

from .errors import TransientBackendError
from ..util.logging import logger

T = TypeVar("T")


def with_retry(
    fn: Callable[[], T],
    operation: str = "remote_call",
    max_retries: int = 3,
    base_delay_ms: float = 1000,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn, retrying transient failures.

    Makes at most 1 + max_retries attempts. The delay starts at base_delay_ms
    and doubles after each failed attempt. Only TransientBackendError is
    retried; any other exception propagates immediately.

    Args:
        fn: Zero-argument callable performing the remote call
        operation: Name used in retry log lines
        max_retries: Extra attempts after the first
        base_delay_ms: Initial backoff in milliseconds
        sleep: Injected for tests

    Returns:
        The value returned by fn

    Raises:
        TransientBackendError: when every attempt failed transiently
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    delay_ms = base_delay_ms
    last_error = None

    for attempt in range(max_retries + 1):
        try:
            return fn()
        except TransientBackendError as e:
            last_error = e
            if attempt < max_retries:
                logger.log_retry(operation, attempt + 1, delay_ms, str(e))
                sleep(delay_ms / 1000.0)
                delay_ms *= 2

    raise TransientBackendError(
        f"{operation} failed after {max_retries + 1} attempts: {last_error}"
    ) from last_error
