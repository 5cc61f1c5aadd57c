"""Circuit breaker implementation with a rolling failure window."""

import time
from typing import List, Optional, Protocol

from resumable_importer.models.data_models import CircuitState


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> float:
        """Return current time in seconds."""
        ...


class MonotonicClock:
    """Default clock implementation using time.monotonic."""

    def now(self) -> float:
        """Return current monotonic time in seconds."""
        return time.monotonic()


class CircuitBreaker:
    """
    Circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Guards the single upstream host:
    - Opens once ``failure_threshold`` failures fall inside the rolling
      ``failure_window_seconds``
    - Stays open until ``reset_timeout_seconds`` have passed since the last failure
    - Half-open admits probes; ``success_threshold`` successes close it
    - Any failure while half-open reopens it immediately
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout_seconds: float = 30.0,
        success_threshold: int = 2,
        failure_window_seconds: float = 60.0,
        clock: Optional[Clock] = None,
        logger: Optional["StructuredLogger"] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Windowed failures before opening circuit
            reset_timeout_seconds: Time after the last failure before probing
            success_threshold: Half-open successes needed to close circuit
            failure_window_seconds: Failures older than this are forgotten
            clock: Clock interface for time management (defaults to MonotonicClock)
            logger: Optional structured logger for state transitions
        """
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.success_threshold = success_threshold
        self.failure_window_seconds = failure_window_seconds
        self.clock = clock or MonotonicClock()
        self.logger = logger

        self._state = CircuitState.CLOSED
        self._failures: List[float] = []
        self._success_count = 0
        self._last_failure_time = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        """Failures inside the rolling window."""
        self._prune_failures()
        return len(self._failures)

    def allow_request(self) -> bool:
        """
        Check if a request may be issued.

        Returns:
            - True if circuit is CLOSED or HALF_OPEN (probing)
            - True if circuit is OPEN but the reset timeout elapsed
              (transitions to HALF_OPEN)
            - False otherwise
        """
        self._prune_failures()

        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self.clock.now() - self._last_failure_time >= self.reset_timeout_seconds:
                self._transition(CircuitState.HALF_OPEN)
                self._success_count = 0
                return True
            return False

        return True

    def record_success(self) -> None:
        """Record a successful request."""
        # A success clears the closed-state failure run
        self._failures = []

        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._success_count = 0
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed request."""
        current_time = self.clock.now()
        self._failures.append(current_time)
        self._last_failure_time = current_time

        if self._state == CircuitState.HALF_OPEN:
            self._success_count = 0
            self._transition(CircuitState.OPEN)
            return

        self._prune_failures()
        if self._state == CircuitState.CLOSED and len(self._failures) >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def get_time_until_retry(self) -> float:
        """Seconds until an OPEN circuit will admit a probe (0 when not open)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = self.clock.now() - self._last_failure_time
        return max(0.0, self.reset_timeout_seconds - elapsed)

    def reset(self) -> None:
        """Force the circuit closed and clear all counters."""
        self._failures = []
        self._success_count = 0
        self._last_failure_time = 0.0
        self._transition(CircuitState.CLOSED)

    def _prune_failures(self) -> None:
        cutoff = self.clock.now() - self.failure_window_seconds
        self._failures = [t for t in self._failures if t > cutoff]

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        if self.logger:
            self.logger.circuit_breaker_state(state=new_state.value, failures=len(self._failures))
