# storefront/integrations/circuit_breaker.py
"""
Circuit Breaker Pattern Implementation.

Protects the saga from hammering an external service (carrier, invoicing,
email) that is already down. Uses Redis for distributed state across workers.
An open circuit fails the call immediately with CircuitBreakerOpenError, which
the saga treats like any other step failure.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests rejected immediately
- HALF_OPEN: Testing recovery with limited requests
"""

from enum import Enum
from datetime import datetime, timedelta
import logging
from typing import Callable, Any

import httpx

from storefront.exceptions import IntegrationError
from storefront.redis import get_redis_client

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject immediately
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreakerOpenError(IntegrationError):
    """Raised when circuit breaker is open and rejecting calls."""

    def __init__(self, service_name: str, retry_after: int = 60):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"{service_name} circuit breaker is OPEN. "
            f"Service experiencing issues. Try again in {retry_after}s"
        )


class CircuitBreaker:
    """
    Distributed circuit breaker using Redis for state.

    Usage:
        breaker = CircuitBreaker("carrier")
        result = await breaker.call(api_function, arg1, arg2)
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = 5,
        timeout_seconds: int = 60,
        half_open_max_calls: int = 3
    ):
        """
        Args:
            service_name: Name of the external service (carrier, invoicing, email)
            failure_threshold: Number of failures before opening circuit
            timeout_seconds: Time to wait before attempting recovery
            half_open_max_calls: Number of test calls allowed in half-open state
        """
        self.redis = get_redis_client()
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.timeout = timeout_seconds
        self.half_open_max_calls = half_open_max_calls

        # Redis keys
        self.key_state = f"circuit_breaker:{service_name}:state"
        self.key_failures = f"circuit_breaker:{service_name}:failures"
        self.key_last_failure = f"circuit_breaker:{service_name}:last_failure"
        self.key_half_open_calls = f"circuit_breaker:{service_name}:half_open_calls"
        self.key_timeout_multiplier = f"circuit_breaker:{service_name}:timeout_multiplier"

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is open
        """
        state = self._get_state()

        if state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition_to_half_open()
            else:
                retry_after = self._get_retry_seconds()
                logger.warning(f"Circuit breaker OPEN for {self.service_name}, rejecting call")
                raise CircuitBreakerOpenError(self.service_name, retry_after)

        if state == CircuitState.HALF_OPEN:
            if not self._can_attempt_half_open_call():
                raise CircuitBreakerOpenError(self.service_name, self.timeout)

        # Attempt the call
        try:
            result = await func(*args, **kwargs)
            self._record_success()
            return result
        except Exception as e:
            self._record_failure(e)
            raise

    def _get_state(self) -> CircuitState:
        """Fetch current state from Redis."""
        state = self.redis.get(self.key_state)
        if state:
            return CircuitState(state)
        return CircuitState.CLOSED

    def _record_success(self):
        """Reset failure count, transition to CLOSED if in HALF_OPEN."""
        state = self._get_state()

        self.redis.delete(self.key_failures)
        self.redis.delete(self.key_last_failure)
        self.redis.delete(self.key_half_open_calls)

        if state == CircuitState.HALF_OPEN:
            # Reset exponential backoff multiplier on full recovery
            self.redis.delete(self.key_timeout_multiplier)
            self.redis.set(self.key_state, CircuitState.CLOSED.value)
            logger.info(f"Circuit breaker CLOSED for {self.service_name} - service recovered")

    def _record_failure(self, error: Exception):
        """Increment failure count, transition to OPEN if threshold exceeded."""
        if not self._is_circuit_breaker_error(error):
            return

        failures = self.redis.incr(self.key_failures)
        self.redis.set(self.key_last_failure, datetime.utcnow().isoformat())

        logger.warning(f"Circuit breaker recorded failure {failures}/{self.failure_threshold} for {self.service_name}: {error}")

        if failures >= self.failure_threshold:
            self._transition_to_open()

    def _is_circuit_breaker_error(self, error: Exception) -> bool:
        """
        Determine if error should count toward circuit breaker.

        Counts: Timeouts, connection errors, 5xx errors, rate limits
        Ignores: 4xx client errors, error payloads for a bad request
        """
        if isinstance(error, (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError)):
            return True

        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return 500 <= status < 600 or status == 429

        status = getattr(error, "status_code", None)
        if isinstance(status, int):
            return 500 <= status < 600 or status == 429

        return False

    def _current_timeout(self) -> int:
        m_raw = self.redis.get(self.key_timeout_multiplier)
        multiplier = int(m_raw) if m_raw else 1
        return min(self.timeout * (2 ** (multiplier - 1)), 86400)

    def _transition_to_open(self):
        """Open circuit and log alert."""
        self.redis.set(self.key_state, CircuitState.OPEN.value)

        # Exponential backoff calculation, capped at 24 hours
        multiplier = self.redis.incr(self.key_timeout_multiplier)
        current_timeout = min(self.timeout * (2 ** (multiplier - 1)), 86400)

        self.redis.expire(self.key_state, current_timeout * 2)
        logger.error(f"Circuit breaker OPENED for {self.service_name} - service appears down. Timeout: {current_timeout}s")

    def _transition_to_half_open(self):
        """Transition to half-open for testing."""
        self.redis.set(self.key_state, CircuitState.HALF_OPEN.value)
        self.redis.set(self.key_half_open_calls, 0)
        logger.info(f"Circuit breaker HALF-OPEN for {self.service_name} - testing recovery")

    def _should_attempt_reset(self) -> bool:
        """Check if timeout has expired."""
        last_failure = self.redis.get(self.key_last_failure)
        if not last_failure:
            return True

        last_failure_dt = datetime.fromisoformat(last_failure)
        return datetime.utcnow() - last_failure_dt > timedelta(seconds=self._current_timeout())

    def _can_attempt_half_open_call(self) -> bool:
        """Check if we can make another test call in half-open state."""
        calls = self.redis.get(self.key_half_open_calls)
        current_calls = int(calls) if calls else 0

        if current_calls >= self.half_open_max_calls:
            self._transition_to_open()
            return False

        self.redis.incr(self.key_half_open_calls)
        return True

    def _get_retry_seconds(self) -> int:
        """Calculate seconds until retry is allowed."""
        last_failure = self.redis.get(self.key_last_failure)
        if not last_failure:
            return self.timeout

        last_failure_dt = datetime.fromisoformat(last_failure)
        elapsed = (datetime.utcnow() - last_failure_dt).total_seconds()
        return max(1, int(self._current_timeout() - elapsed))

    def get_status(self) -> dict:
        """Get current circuit breaker status for monitoring."""
        state = self._get_state()
        failures = self.redis.get(self.key_failures)
        last_failure = self.redis.get(self.key_last_failure)

        return {
            "service": self.service_name,
            "state": state.value,
            "failure_count": int(failures) if failures else 0,
            "failure_threshold": self.failure_threshold,
            "last_failure": last_failure,
            "timeout_seconds": self.timeout,
        }

    def reset(self):
        """Manually reset circuit breaker (for ops)."""
        self.redis.delete(self.key_state)
        self.redis.delete(self.key_failures)
        self.redis.delete(self.key_last_failure)
        self.redis.delete(self.key_half_open_calls)
        logger.info(f"Circuit breaker manually reset for {self.service_name}")


# =============================================================================
# Pre-configured Circuit Breakers
# =============================================================================

def get_carrier_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the carrier API."""
    return CircuitBreaker(
        service_name="carrier",
        failure_threshold=5,
        timeout_seconds=60
    )


def get_invoicing_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the invoicing API."""
    return CircuitBreaker(
        service_name="invoicing",
        failure_threshold=5,
        timeout_seconds=120
    )


def get_email_circuit_breaker() -> CircuitBreaker:
    """Get circuit breaker for the transactional email API."""
    return CircuitBreaker(
        service_name="email",
        failure_threshold=5,
        timeout_seconds=60
    )


def get_all_circuit_statuses() -> dict:
    """Get status of all circuit breakers."""
    return {
        "carrier": get_carrier_circuit_breaker().get_status(),
        "invoicing": get_invoicing_circuit_breaker().get_status(),
        "email": get_email_circuit_breaker().get_status(),
    }
