"""Retry policy value and retry combinator.

This module models backoff as an explicit policy consumed by one wrapper.
The wrapper delegates attempt bookkeeping and waiting to tenacity.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger

_LOGGER = get_logger(__name__)
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_seconds: Delay after the first failed attempt.
        multiplier: Growth factor applied for each further attempt.
        max_delay_seconds: Upper bound for one delay.
    """

    max_attempts: int
    base_delay_seconds: float
    multiplier: float
    max_delay_seconds: float


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    is_transient: Callable[[BaseException], bool],
    *,
    operation_name: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run an operation, retrying transient failures per the policy.

    Args:
        operation: Zero-argument callable performing one attempt.
        policy: Attempt bound and backoff settings.
        is_transient: Predicate selecting retryable exceptions.
        operation_name: Label used in retry log events.
        sleep: Sleep function, replaceable in tests.

    Returns:
        The operation result from the first successful attempt.

    Raises:
        BaseException: The last exception when attempts are exhausted or
            the failure is not transient.
    """
    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_seconds,
            exp_base=policy.multiplier,
            max=policy.max_delay_seconds,
        ),
        retry=retry_if_exception(is_transient),
        before_sleep=_log_before_sleep(operation_name, policy),
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)


def _log_before_sleep(
    operation_name: str,
    policy: RetryPolicy,
) -> Callable[[RetryCallState], None]:
    def _log(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        next_action = retry_state.next_action
        _LOGGER.warning(
            "retry_attempt_failed",
            operation=operation_name,
            attempt=retry_state.attempt_number,
            max_attempts=policy.max_attempts,
            delay_seconds=next_action.sleep if next_action is not None else None,
            error=repr(error),
        )

    return _log
