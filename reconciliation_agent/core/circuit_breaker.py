"""
Ratio-based circuit breaker for the payment gateway.

One breaker lives for the duration of one reconciliation run; it is never
persisted, so every run starts CLOSED.

    CLOSED    -> OPEN       error ratio (errors / calls) reaches the threshold
    OPEN      -> HALF_OPEN  cool-down elapsed since the last failure
    HALF_OPEN -> CLOSED     the single trial call succeeded (counters reset)
    HALF_OPEN -> OPEN       the trial call failed (cool-down clock restarts)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    name: str
    error_threshold: float = 0.5  # errors / calls
    min_calls: int = 1  # calls observed before the ratio is evaluated
    recovery_timeout: float = 60.0  # seconds

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _calls: int = field(default=0, init=False)
    _failures: int = field(default=0, init=False)
    _last_failure_time: datetime | None = field(default=None, init=False)
    _half_open_in_flight: bool = field(default=False, init=False)
    _lock: Lock = field(default_factory=Lock, init=False)

    @property
    def state(self) -> CircuitState:
        """Return current state. Use allow_request() for state transitions."""
        return self._state

    @property
    def calls(self) -> int:
        return self._calls

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def error_ratio(self) -> float:
        return self._failures / self._calls if self._calls else 0.0

    def retry_after(self) -> float:
        """Seconds until an OPEN circuit may move to HALF_OPEN."""
        if self._state != CircuitState.OPEN or self._last_failure_time is None:
            return 0.0
        elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
        return max(0.0, self.recovery_timeout - elapsed)

    def _check_recovery_transition(self) -> None:
        """
        Move OPEN -> HALF_OPEN once the cool-down elapsed.

        Must be called while holding self._lock.
        """
        if self._state == CircuitState.OPEN and self._last_failure_time:
            elapsed = (datetime.now(timezone.utc) - self._last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_in_flight = False
                logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")

    def allow_request(self) -> bool:
        """Whether the next call may go upstream. HALF_OPEN lets exactly one through."""
        with self._lock:
            self._check_recovery_transition()

            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                return False
            if self._half_open_in_flight:
                return False
            self._half_open_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._calls = 0
                self._failures = 0
                self._half_open_in_flight = False
                logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED")
                return
            self._calls += 1

    def record_failure(self) -> None:
        with self._lock:
            self._calls += 1
            self._failures += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._half_open_in_flight = False
                logger.warning(f"Circuit {self.name}: HALF_OPEN -> OPEN (failure during recovery)")
            elif (
                self._state == CircuitState.CLOSED
                and self._calls >= self.min_calls
                and self.error_ratio >= self.error_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    f"Circuit {self.name}: CLOSED -> OPEN "
                    f"(error ratio {self.error_ratio:.2f} >= {self.error_threshold:.2f})"
                )
