"""Shared retry policy and the bounded-retry combinator.

RetryPolicy is a plain value object: the recovery loop drives it through
bounded_retry() (tenacity under the hood), and the job queue reads
delay_for() directly to compute scheduled_for on requeue.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_none,
)

from forgeflow.core.exceptions import RetryableAttemptError, RetryLimitExceededError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts an operation gets and how long to wait between them.

    Delay after attempt ``n`` is ``backoff_unit * backoff_base ** n`` seconds.
    A backoff_unit of 0 means "retry immediately".
    """

    max_attempts: int
    backoff_base: float = 2.0
    backoff_unit: float = 1.0
    max_delay: float | None = None

    def delay_for(self, attempts: int) -> float:
        delay = self.backoff_unit * (self.backoff_base ** attempts)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    def wait_strategy(self):
        """tenacity wait matching delay_for() (tenacity counts attempts from 1)."""
        if self.backoff_unit <= 0:
            return wait_none()
        return wait_exponential(
            multiplier=self.backoff_unit * self.backoff_base,
            exp_base=self.backoff_base,
            max=self.max_delay if self.max_delay is not None else float("inf"),
        )


async def bounded_retry(
    policy: RetryPolicy,
    fn: Callable[[int], Awaitable[T]],
    *,
    step: str = "operation",
) -> T:
    """Run ``fn(attempt_number)`` until it succeeds or the policy is exhausted.

    Only RetryableAttemptError consumes an attempt and triggers another try;
    any other exception propagates immediately. Exhaustion raises
    RetryLimitExceededError carrying the last attempt's message.

    Args:
        policy: Attempt budget and backoff
        fn: Coroutine function receiving the 1-based attempt number
        step: Name used in logs and in RetryLimitExceededError

    Returns:
        Whatever the first successful attempt returned
    """
    if policy.max_attempts < 1:
        raise RetryLimitExceededError(step, 0)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception_type(RetryableAttemptError),
        reraise=True,
        before_sleep=lambda rs: logger.warning(
            "retry_attempt_failed",
            step=step,
            attempt=rs.attempt_number,
            sleep_seconds=rs.next_action.sleep if rs.next_action else 0,
        ),
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await fn(attempt.retry_state.attempt_number)
    except RetryableAttemptError as exc:
        raise RetryLimitExceededError(step, policy.max_attempts, last_error=str(exc)) from exc

    return result
