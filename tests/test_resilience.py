"""Tests for the retry policies."""

from __future__ import annotations

import pytest

from secretstore.resilience import ExponentialBackoff, RetryConfig, RetryPolicy, is_too_many_requests
from tests.mocks import forbidden, too_many_requests


class FlakyOperation:
    """Operation failing with the given errors before succeeding."""

    def __init__(self, *errors: Exception, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result

    async def run_async(self) -> str:
        return self()


class TestIsTooManyRequests:
    """Tests for throttling detection."""

    def test_status_code_attribute(self):
        assert is_too_many_requests(too_many_requests()) is True
        assert is_too_many_requests(forbidden()) is False

    def test_response_status_code(self):
        class ResponseError(Exception):
            def __init__(self, status_code: int) -> None:
                super().__init__(status_code)
                self.response = type("Response", (), {"status_code": status_code})()

        assert is_too_many_requests(ResponseError(429)) is True
        assert is_too_many_requests(ResponseError(500)) is False

    def test_other_errors(self):
        assert is_too_many_requests(ValueError("boom")) is False


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_throttling_defaults(self):
        config = RetryConfig.throttling()
        policy = RetryPolicy(config)

        assert config.max_attempts == 6
        assert [policy.get_delay(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_throttling_only_retries_429(self):
        config = RetryConfig.throttling()

        assert config.is_retryable(too_many_requests()) is True
        assert config.is_retryable(forbidden()) is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1},
            {"base_delay": 10, "max_delay": 1},
        ],
    )
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)


class TestExponentialBackoff:
    """Tests for ExponentialBackoff."""

    def test_delays_capped(self):
        backoff = ExponentialBackoff(base_delay=1.0, multiplier=2.0, max_delay=5.0)

        assert [backoff.get_delay(attempt) for attempt in range(4)] == [1.0, 2.0, 4.0, 5.0]


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_retries_until_success(self):
        delays: list[float] = []
        policy = RetryPolicy(RetryConfig.throttling(), sleep=delays.append)
        operation = FlakyOperation(too_many_requests(), too_many_requests())

        assert policy.execute(operation) == "ok"
        assert operation.calls == 3
        assert delays == [1.0, 2.0]

    def test_reraises_last_error_when_exhausted(self):
        delays: list[float] = []
        last = too_many_requests()
        policy = RetryPolicy(RetryConfig.throttling(retries=2), sleep=delays.append)
        operation = FlakyOperation(too_many_requests(), too_many_requests(), last)

        with pytest.raises(type(last)) as exc_info:
            policy.execute(operation)

        assert exc_info.value is last
        assert operation.calls == 3
        assert delays == [1.0, 2.0]

    def test_non_retryable_error_raised_immediately(self):
        delays: list[float] = []
        policy = RetryPolicy(RetryConfig.throttling(), sleep=delays.append)
        operation = FlakyOperation(forbidden())

        with pytest.raises(Exception) as exc_info:
            policy.execute(operation)

        assert exc_info.value.status_code == 403
        assert operation.calls == 1
        assert delays == []

    def test_passes_arguments(self):
        policy = RetryPolicy(RetryConfig(max_attempts=1))

        assert policy.execute(lambda a, b=0: a + b, 1, b=2) == 3

    @pytest.mark.asyncio
    async def test_async_retries(self):
        delays: list[float] = []

        async def record(delay: float) -> None:
            delays.append(delay)

        policy = RetryPolicy(RetryConfig.throttling(), async_sleep=record)
        operation = FlakyOperation(too_many_requests())

        assert await policy.execute_async(operation.run_async) == "ok"
        assert operation.calls == 2
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_async_non_retryable(self):
        policy = RetryPolicy(RetryConfig(retry_on=lambda error: isinstance(error, TimeoutError)))
        operation = FlakyOperation(KeyError("missing"))

        with pytest.raises(KeyError):
            await policy.execute_async(operation.run_async)

        assert operation.calls == 1
