"""Resilience helpers for calls to the dashboard platform API.

- Circuit Breaker (CLOSED → OPEN → HALF_OPEN → CLOSED)
- Retry with Exponential Backoff, for idempotent reads only
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)


# ── Circuit Breaker ──

class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops hammering a failing upstream.

    - ``failure_threshold`` consecutive failures → OPEN
    - After ``open_timeout`` seconds → HALF_OPEN, one trial call allowed
    - Trial success → CLOSED, trial failure → OPEN again
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        open_timeout: float = 30.0,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: float = 0

    def allow_request(self) -> bool:
        if self.state == CircuitState.OPEN:
            if time.monotonic() - self.opened_at < self.open_timeout:
                return False
            self.state = CircuitState.HALF_OPEN
            logger.info("Circuit %s: OPEN → HALF_OPEN", self.name)
        return True

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Circuit %s: HALF_OPEN → CLOSED", self.name)
        self.state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self):
        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(
                    "Circuit %s: %s → OPEN (failures=%d)",
                    self.name, self.state.name, self.failure_count,
                )
            self.state = CircuitState.OPEN
            self.opened_at = time.monotonic()

    def reset(self):
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = 0


# ── Retry with Exponential Backoff ──

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


async def retry_with_backoff(
    func: Callable[..., Any],
    *args: Any,
    max_retries: int = 3,
    backoff_base: float = 1.0,
    backoff_factor: float = 2.0,
    **kwargs: Any,
) -> Any:
    """Run ``func``, retrying transport errors and 429/5xx responses.

    Delay: backoff_base * (backoff_factor ** attempt) → 1s, 2s, 4s by default.
    Never wrap a non-idempotent call (dashboard create/update) with this.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except (httpx.HTTPStatusError, httpx.TransportError) as exc:
            if not is_retryable(exc) or attempt >= max_retries:
                if attempt:
                    logger.error("Giving up after %d retries: %s", attempt, exc)
                raise
            delay = backoff_base * (backoff_factor ** attempt)
            logger.warning(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1, max_retries, delay, exc,
            )
            await asyncio.sleep(delay)


# ── One breaker per upstream service ──

circuit_breakers: dict[str, CircuitBreaker] = {
    "newrelic": CircuitBreaker("newrelic"),
}


def get_circuit_breaker(service: str) -> CircuitBreaker:
    if service not in circuit_breakers:
        circuit_breakers[service] = CircuitBreaker(service)
    return circuit_breakers[service]
