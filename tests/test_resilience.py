"""Tests for the circuit breaker and retry helpers."""
import httpx
import pytest

from dashvault.integrations.resilience import (
    CircuitBreaker,
    CircuitState,
    get_circuit_breaker,
    is_retryable,
    retry_with_backoff,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://test.com")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestCircuitBreaker:
    def test_initial_state_is_closed(self):
        cb = CircuitBreaker("test")
        assert cb.state == CircuitState.CLOSED
        assert cb.allow_request() is True

    def test_failures_open_circuit(self):
        cb = CircuitBreaker("test", failure_threshold=3)
        for _ in range(3):
            cb.record_failure()
        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_success_resets_failure_count(self):
        cb = CircuitBreaker("test", failure_threshold=3)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 1

    def test_half_open_after_timeout(self):
        cb = CircuitBreaker("test", failure_threshold=1, open_timeout=0)
        cb.record_failure()
        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self):
        cb = CircuitBreaker("test", failure_threshold=1, open_timeout=0)
        cb.record_failure()
        cb.allow_request()
        cb.record_success()
        assert cb.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self):
        cb = CircuitBreaker("test", failure_threshold=5, open_timeout=0)
        for _ in range(5):
            cb.record_failure()
        cb.allow_request()
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_reset(self):
        cb = CircuitBreaker("test", failure_threshold=1)
        cb.record_failure()
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0

    def test_registry_returns_same_breaker(self):
        assert get_circuit_breaker("newrelic") is get_circuit_breaker("newrelic")


class TestRetry:
    @pytest.mark.parametrize("status_code,expected", [(429, True), (503, True), (400, False), (404, False)])
    def test_is_retryable(self, status_code, expected):
        assert is_retryable(_status_error(status_code)) is expected

    def test_transport_errors_are_retryable(self):
        assert is_retryable(httpx.ConnectTimeout("timeout")) is True

    async def test_succeeds_after_retries(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise _status_error(502)
            return "ok"

        assert await retry_with_backoff(flaky, max_retries=3, backoff_base=0) == "ok"
        assert len(attempts) == 3

    async def test_gives_up_after_max_retries(self):
        attempts = []

        async def always_down():
            attempts.append(1)
            raise _status_error(503)

        with pytest.raises(httpx.HTTPStatusError):
            await retry_with_backoff(always_down, max_retries=2, backoff_base=0)
        assert len(attempts) == 3

    async def test_non_retryable_raises_immediately(self):
        attempts = []

        async def forbidden():
            attempts.append(1)
            raise _status_error(403)

        with pytest.raises(httpx.HTTPStatusError):
            await retry_with_backoff(forbidden, max_retries=3, backoff_base=0)
        assert len(attempts) == 1
