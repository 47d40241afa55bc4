"""
Unit tests for retry and circuit breaker utilities.
"""

from unittest.mock import patch

import pytest

from releasekit.utils.resilience import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
    backoff_delay,
    retry_with_backoff,
)


class FlakyError(Exception):
    pass


def test_backoff_delay_grows_and_caps():
    assert [backoff_delay(n, base_delay=1.0, max_delay=5.0) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestRetryWithBackoff:
    """Test the retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0, exceptions=(FlakyError,))
        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise FlakyError("not yet")
            return "done"

        assert await operation() == "done"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        @retry_with_backoff(max_retries=2, base_delay=0, exceptions=(FlakyError,))
        async def operation():
            calls.append(1)
            raise FlakyError("always")

        with pytest.raises(FlakyError):
            await operation()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0, exceptions=(FlakyError,))
        async def operation():
            calls.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await operation()
        assert len(calls) == 1


async def failing():
    raise FlakyError("down")


async def succeeding():
    return "ok"


class TestCircuitBreaker:
    """Test circuit state transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self):
        breaker = CircuitBreaker(name="test", failure_threshold=2, timeout=60)

        for _ in range(2):
            with pytest.raises(FlakyError):
                await breaker.call(failing)

        assert breaker.get_state() == CircuitState.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(succeeding)

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker(failure_threshold=2)

        with pytest.raises(FlakyError):
            await breaker.call(failing)
        await breaker.call(succeeding)
        with pytest.raises(FlakyError):
            await breaker.call(failing)

        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_probes_close_circuit(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=10, half_open_max_calls=2)

        with patch("releasekit.utils.resilience.time.time", return_value=1000.0):
            with pytest.raises(FlakyError):
                await breaker.call(failing)

        with patch("releasekit.utils.resilience.time.time", return_value=1011.0):
            assert await breaker.call(succeeding) == "ok"
            assert breaker.get_state() == CircuitState.HALF_OPEN
            assert await breaker.call(succeeding) == "ok"

        assert breaker.get_state() == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_probe_reopens(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=10)

        with patch("releasekit.utils.resilience.time.time", return_value=1000.0):
            with pytest.raises(FlakyError):
                await breaker.call(failing)

        with patch("releasekit.utils.resilience.time.time", return_value=1011.0):
            with pytest.raises(FlakyError):
                await breaker.call(failing)
            assert breaker.get_state() == CircuitState.OPEN
            with pytest.raises(CircuitBreakerOpenError):
                await breaker.call(succeeding)

    @pytest.mark.asyncio
    async def test_reset(self):
        breaker = CircuitBreaker(failure_threshold=1)
        with pytest.raises(FlakyError):
            await breaker.call(failing)

        breaker.reset()

        assert breaker.get_state() == CircuitState.CLOSED
        assert await breaker.call(succeeding) == "ok"
