"""Tests for the retry policy used around batch writes."""

import asyncio
import sqlite3

import pytest

from tablepipe.core.errors import BatchWriteError, ConfigurationError
from tablepipe.core.retry import RetryConfig, RetryPolicy, is_transient


class TestTransientClassification:
    @pytest.mark.parametrize(
        "exception",
        [
            ConnectionError("reset"),
            TimeoutError("slow"),
            sqlite3.OperationalError("database is locked"),
            RuntimeError("server closed the connection unexpectedly"),
            RuntimeError("deadlock detected"),
        ],
    )
    def test_transient(self, exception):
        assert is_transient(exception)

    @pytest.mark.parametrize(
        "exception",
        [
            ValueError("invalid literal for int()"),
            ConfigurationError("connection string missing"),
            BatchWriteError("analysis", ConnectionError("lost"), 10),
        ],
    )
    def test_not_transient(self, exception):
        assert not is_transient(exception)


class TestRetryPolicy:
    def test_delay_grows_exponentially_and_is_capped(self):
        policy = RetryPolicy(RetryConfig(initial_delay=1.0, backoff_multiplier=2.0, max_delay=5.0))

        assert [policy.calculate_delay(a) for a in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_jitter_stays_within_ten_percent(self):
        policy = RetryPolicy(RetryConfig(initial_delay=10.0, jitter=True))

        for _ in range(20):
            assert 9.0 <= policy.calculate_delay(1) <= 11.0

    def test_retries_until_success(self):
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("connection refused")
            return "done"

        policy = RetryPolicy(RetryConfig(max_retries=3, initial_delay=0))

        assert asyncio.run(policy.execute(operation)) == "done"
        assert len(attempts) == 3

    def test_non_transient_error_is_not_retried(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise ValueError("bad data")

        policy = RetryPolicy(RetryConfig(max_retries=5, initial_delay=0))

        with pytest.raises(ValueError):
            asyncio.run(policy.execute(operation))
        assert len(attempts) == 1

    def test_gives_up_after_max_retries(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise TimeoutError("timed out")

        policy = RetryPolicy(RetryConfig(max_retries=2, initial_delay=0))

        with pytest.raises(TimeoutError):
            asyncio.run(policy.execute(operation))
        assert len(attempts) == 3
