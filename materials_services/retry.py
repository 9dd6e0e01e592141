"""
materials_services.retry -- local retry of retryable storage failures.

Responsibility:
    Re-runs a whole action when it failed with an error whose ``retryable``
    flag is set (``OptimisticLockError``, ``StorageUnavailableError``).
    Each attempt runs in a fresh transaction and re-reads state, so a lost
    race on a request surfaces on the next attempt as the domain error it
    really is (typically ``IllegalTransitionError``).

Invariants enforced:
    - Non-retryable errors propagate on the first occurrence.
    - At most ``RetryPolicy.max_attempts`` attempts; the last error is
      re-raised unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from materials_config.schema import RetryPolicy
from materials_kernel.exceptions import MaterialsKernelError
from materials_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, MaterialsKernelError) and exc.retryable


def run_with_retry(
    operation: str,
    attempt_fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``attempt_fn`` until it succeeds or fails non-retryably."""
    attempt = 1
    while True:
        try:
            return attempt_fn()
        except MaterialsKernelError as exc:
            if not exc.retryable:
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    "action_retries_exhausted",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error_code": exc.code,
                    },
                )
                raise
            delay = policy.delay_seconds(attempt)
            logger.warning(
                "action_retry_scheduled",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "error_code": exc.code,
                    "delay_seconds": delay,
                },
            )
            sleep(delay)
            attempt += 1
