"""Tests for retry and circuit breaker utilities."""

from __future__ import annotations

import pytest

from shift_escalation.core.exceptions import SmsDeliveryError, StoreError
from shift_escalation.core.retry import (
    CircuitBreaker,
    CircuitOpen,
    CircuitState,
    RetryConfig,
    RetryExhausted,
    get_circuit_breaker,
    get_circuit_breaker_status,
    retry,
    retry_async,
)


class TestRetryConfig:
    def test_exponential_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=10.0, jitter=0.0)

        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(2) == 2.0
        assert config.calculate_delay(3) == 4.0
        assert config.calculate_delay(10) == 10.0

    def test_min_delay(self):
        config = RetryConfig(base_delay=0.0, min_delay=0.0, jitter=0.0)

        assert config.calculate_delay(1) == 0.0

    def test_should_retry(self):
        config = RetryConfig(
            max_attempts=2,
            retryable_exceptions=(SmsDeliveryError,),
            non_retryable_exceptions=(CircuitOpen,),
        )

        assert config.should_retry(SmsDeliveryError("x"), 1)
        assert not config.should_retry(SmsDeliveryError("x"), 2)
        assert not config.should_retry(ValueError("x"), 1)


class TestRetryAsync:
    """Test the retry loop."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise SmsDeliveryError("not yet")
            return "ok"

        config = RetryConfig(max_attempts=3, base_delay=0, min_delay=0)

        assert await retry_async(flaky, config=config) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        async def always_fails():
            raise SmsDeliveryError("down")

        config = RetryConfig(max_attempts=2, base_delay=0, min_delay=0)

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(always_fails, config=config)

        assert exc_info.value.attempts == 2
        assert isinstance(exc_info.value.last_error, SmsDeliveryError)

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self):
        async def bad_input():
            raise ValueError("bad")

        config = RetryConfig(retryable_exceptions=(SmsDeliveryError,), base_delay=0, min_delay=0)

        with pytest.raises(ValueError):
            await retry_async(bad_input, config=config)

    @pytest.mark.asyncio
    async def test_decorator(self):
        calls = []

        @retry(max_attempts=2, base_delay=0, retryable_exceptions=(StoreError,))
        async def load():
            calls.append(1)
            if len(calls) == 1:
                raise StoreError("locked")
            return "shift"

        assert await load() == "shift"
        assert len(calls) == 2


class TestCircuitBreaker:
    """Test state transitions."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2)

        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert not breaker.allow_request()
        assert breaker.reset_at is not None

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=0.0)
        breaker.record_failure()

        assert breaker.state == CircuitState.HALF_OPEN

    def test_closes_after_successes(self):
        breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=0.0, success_threshold=2)
        breaker.record_failure()
        assert breaker.allow_request()

        breaker.record_success()
        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_context_manager_rejects_when_open(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        breaker.record_failure()

        with pytest.raises(CircuitOpen):
            async with breaker:
                pass

    @pytest.mark.asyncio
    async def test_context_manager_records_failure(self):
        breaker = CircuitBreaker("test", failure_threshold=5)

        with pytest.raises(SmsDeliveryError):
            async with breaker:
                raise SmsDeliveryError("down")

        assert breaker.failure_count == 1

    def test_registry(self):
        breaker = get_circuit_breaker("sms", failure_threshold=10)

        assert get_circuit_breaker("sms") is breaker
        assert get_circuit_breaker_status()["sms"]["state"] == "closed"
