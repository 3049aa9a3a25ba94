"""Retry logic with exponential backoff for remote calls.

This module provides:
- is_transient: Classify an exception as worth retrying
- retry_with_backoff: Bounded exponential backoff retry

Only transient failures (network errors, timeouts, 5xx) are retried.
Validation and permission errors are raised on the first attempt.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from recordsync.core.config import RetryPolicy
from recordsync.core.errors import TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Network-related exceptions that indicate connectivity issues
NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    TransientNetworkError,
    ConnectionError,
    TimeoutError,
    OSError,
)


def is_transient(error: BaseException) -> bool:
    """Check if an error is a transient network failure.

    The builtin PermissionError is an OSError but never transient.
    """
    if isinstance(error, PermissionError):
        return False
    return isinstance(error, NETWORK_EXCEPTIONS)


def retry_with_backoff(
    func: Callable[[], T],
    policy: RetryPolicy | None = None,
    context: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        policy: Retry bound and backoff timing (default RetryPolicy()).
        context: Label used in log messages.
        sleep: Sleep function (injectable for tests).

    Returns:
        Result of the function.

    Raises:
        The first non-transient exception, or the last transient one once
        all retries are used.
    """
    policy = policy or RetryPolicy()
    backoff = policy.initial_backoff

    for attempt in range(policy.max_retries + 1):
        try:
            return func()
        except Exception as e:
            if not is_transient(e):
                logger.debug("%s failed with non-retryable error: %s", context, e)
                raise

            if attempt == policy.max_retries:
                logger.error(
                    "%s failed after %d attempts: %s", context, policy.max_retries + 1, e
                )
                raise

            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
                context,
                attempt + 1,
                policy.max_retries + 1,
                e,
                backoff,
            )
            sleep(backoff)
            backoff = min(backoff * policy.backoff_multiplier, policy.max_backoff)

    # Should not reach here, but satisfy type checker
    raise RuntimeError("Unexpected retry loop exit")
