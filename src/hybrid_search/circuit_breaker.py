"""Per-process circuit breaker for external services.

closed -> open after ``failure_threshold`` consecutive failures,
open -> half_open once ``recovery_timeout`` seconds have passed,
half_open -> closed after ``success_threshold`` successes, or straight back
to open on a single failure.
"""

import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from hybrid_search.degradation import DegradationEvent, DegradationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Guard calls to a flaky dependency.

    Example:
        ```python
        breaker = CircuitBreaker("openai")
        vector = breaker.call(lambda: provider.encode(text))
        ```
    """

    def __init__(
        self,
        service_id: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        success_threshold: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service_id = service_id
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._success_threshold = success_threshold
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._changed_at = clock()
        self._failures = 0
        self._successes = 0

    @property
    def state(self) -> CircuitState:
        """Current state, moving open -> half_open when the timeout elapsed."""
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._changed_at >= self._recovery_timeout
        ):
            logger.info("Circuit breaker %s transitioning to half-open state", self.service_id)
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    def allow_request(self) -> bool:
        return self.state is not CircuitState.OPEN

    def call(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` through the breaker.

        Raises:
            DegradationEvent: CIRCUIT_OPEN when the circuit rejects the call.
                Exceptions from ``operation`` propagate unchanged.
        """
        if not self.allow_request():
            raise DegradationEvent.create(
                DegradationKind.CIRCUIT_OPEN,
                self.service_id,
                {"service": self.service_id, "retry_after": self.seconds_until_retry()},
            )
        try:
            result = operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        state = self.state
        if state is CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self._success_threshold:
                logger.info("Circuit breaker %s recovered to closed state", self.service_id)
                self._transition(CircuitState.CLOSED)
        elif state is CircuitState.CLOSED:
            self._failures = 0

    def record_failure(self) -> None:
        state = self.state
        if state is CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker %s reopened from half-open state", self.service_id)
            self._transition(CircuitState.OPEN)
            return
        self._failures += 1
        if state is CircuitState.CLOSED and self._failures >= self._failure_threshold:
            logger.error(
                "Circuit breaker %s opened after %d failures", self.service_id, self._failures
            )
            self._transition(CircuitState.OPEN)

    def seconds_until_retry(self) -> float:
        if self._state is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self._recovery_timeout - (self._clock() - self._changed_at))

    def reset(self) -> None:
        self._transition(CircuitState.CLOSED)

    def get_stats(self) -> dict:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failures,
            "failure_threshold": self._failure_threshold,
            "success_count": self._successes,
        }

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._changed_at = self._clock()
        self._failures = 0
        self._successes = 0
