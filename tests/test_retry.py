"""Tests for retry module."""

import asyncio

import pytest

from speechmaker.retry import RetryPolicy


def _flaky(failures: int, exc_type=RuntimeError):
    """Operation that fails `failures` times, then returns its attempt number."""
    attempts = []

    async def operation(attempt):
        attempts.append(attempt)
        if len(attempts) <= failures:
            raise exc_type(f"failure {len(attempts)}")
        return attempt

    return operation, attempts


def test_backoff_two_then_four_seconds(fake_sleep):
    """Two failures then success: waits 2s then 4s, succeeds on attempt 3."""
    operation, attempts = _flaky(2)
    policy = RetryPolicy(max_attempts=3, sleep=fake_sleep)
    result = asyncio.run(policy.run(operation))
    assert result == 3
    assert attempts == [1, 2, 3]
    assert fake_sleep.delays == [2.0, 4.0]


def test_exhaustion_raises_last_error(fake_sleep):
    operation, attempts = _flaky(5)
    policy = RetryPolicy(max_attempts=3, sleep=fake_sleep)
    with pytest.raises(RuntimeError, match="failure 3"):
        asyncio.run(policy.run(operation))
    assert attempts == [1, 2, 3]
    # No wait after the final attempt
    assert fake_sleep.delays == [2.0, 4.0]


def test_should_retry_rejects(fake_sleep):
    operation, attempts = _flaky(5, ValueError)
    policy = RetryPolicy(sleep=fake_sleep)
    with pytest.raises(ValueError):
        asyncio.run(policy.run(operation, should_retry=lambda e: not isinstance(e, ValueError)))
    assert attempts == [1]
    assert fake_sleep.delays == []


def test_on_retry_called_before_each_wait(fake_sleep):
    operation, _ = _flaky(2)
    seen = []
    policy = RetryPolicy(sleep=fake_sleep)
    asyncio.run(policy.run(operation, on_retry=lambda a, d, e: seen.append((a, d, str(e)))))
    assert seen == [(1, 2.0, "failure 1"), (2, 4.0, "failure 2")]


def test_cancelled_error_not_retried(fake_sleep):
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        raise asyncio.CancelledError()

    policy = RetryPolicy(sleep=fake_sleep)
    with pytest.raises(asyncio.CancelledError):
        asyncio.run(policy.run(operation))
    assert calls == [1]


def test_delay_for():
    policy = RetryPolicy(base_delay=1.0)
    assert policy.delay_for(1) == 2.0
    assert policy.delay_for(2) == 4.0
    assert RetryPolicy(base_delay=0.5).delay_for(3) == 4.0


def test_invalid_max_attempts(fake_sleep):
    operation, _ = _flaky(0)
    with pytest.raises(ValueError):
        asyncio.run(RetryPolicy(max_attempts=0, sleep=fake_sleep).run(operation))
