"""Tests for RetryPolicy and bounded_retry."""

import pytest

from forgeflow.core.exceptions import RetryableAttemptError, RetryLimitExceededError
from forgeflow.core.retry import RetryPolicy, bounded_retry

pytestmark = pytest.mark.unit


def test_delay_doubles_per_attempt():
    """Default policy waits 2, 4, 8 seconds after attempts 1, 2, 3."""
    policy = RetryPolicy(max_attempts=3)

    assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_delay_is_capped_by_max_delay():
    """max_delay bounds the exponential schedule."""
    policy = RetryPolicy(max_attempts=10, max_delay=5.0)

    assert policy.delay_for(6) == 5.0


async def test_returns_first_success_with_attempt_number():
    """fn receives 1-based attempt numbers; the first success is returned."""
    seen = []

    async def fn(attempt):
        seen.append(attempt)
        if attempt < 2:
            raise RetryableAttemptError("not yet")
        return f"ok on {attempt}"

    result = await bounded_retry(RetryPolicy(max_attempts=3, backoff_unit=0), fn, step="demo")

    assert result == "ok on 2"
    assert seen == [1, 2]


async def test_exhaustion_raises_limit_error_with_last_message():
    """Every attempt failing raises RetryLimitExceededError after exactly max_attempts calls."""
    calls = []

    async def fn(attempt):
        calls.append(attempt)
        raise RetryableAttemptError(f"failure {attempt}")

    with pytest.raises(RetryLimitExceededError) as exc_info:
        await bounded_retry(RetryPolicy(max_attempts=3, backoff_unit=0), fn, step="demo")

    assert calls == [1, 2, 3]
    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error == "failure 3"


async def test_other_exceptions_are_not_retried():
    """Only RetryableAttemptError consumes an attempt; anything else propagates at once."""
    calls = []

    async def fn(attempt):
        calls.append(attempt)
        raise KeyError("boom")

    with pytest.raises(KeyError):
        await bounded_retry(RetryPolicy(max_attempts=3, backoff_unit=0), fn)

    assert calls == [1]


async def test_zero_budget_never_calls_fn():
    """A policy with no attempts fails without running anything."""

    async def fn(attempt):
        raise AssertionError("must not be called")

    with pytest.raises(RetryLimitExceededError):
        await bounded_retry(RetryPolicy(max_attempts=0), fn)
