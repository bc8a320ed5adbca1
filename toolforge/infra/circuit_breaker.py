"""Circuit breaker for reasoning service and OAuth token endpoint calls."""

from enum import Enum
from typing import Callable, Any, Optional
from datetime import datetime, timezone
import logging

from toolforge.infra.metrics import circuit_breaker_state

logger = logging.getLogger(__name__)

_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(RuntimeError):
    """Raised instead of calling the protected service while the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker for external service calls.

    Opens after `failure_threshold` consecutive failures, rejects calls for
    `recovery_timeout` seconds, then lets calls through in half-open state
    until two consecutive successes close it again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state

    @property
    def state(self) -> CircuitState:
        return self._state

    @state.setter
    def state(self, value: CircuitState) -> None:
        self._state = value
        circuit_breaker_state.labels(service=self.name).set(_STATE_VALUES[value.value])

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return

        if self.last_failure_time:
            elapsed = (datetime.now(timezone.utc) - self.last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                return
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is OPEN. "
                f"Retry after {int(self.recovery_timeout - elapsed)} seconds."
            )
        raise CircuitOpenError(f"Circuit breaker '{self.name}' is OPEN.")

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.now(timezone.utc)

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit breaker '{self.name}' opened after {self.failure_count} failures")
            self.state = CircuitState.OPEN

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None


# Global circuit breakers for external services
reasoning_circuit_breaker = CircuitBreaker(
    "reasoning",
    failure_threshold=5,
    recovery_timeout=60,
)

oauth_circuit_breaker = CircuitBreaker(
    "oauth",
    failure_threshold=3,
    recovery_timeout=30,
)
