"""
Tests for the gateway circuit breaker.

Tests cover:
1. State transitions (CLOSED -> OPEN -> HALF_OPEN -> CLOSED / OPEN)
2. Ratio evaluation after every call (optional minimum-calls guard)
3. Half-open single trial call
4. retry_after reporting
"""

from datetime import datetime, timedelta, timezone

from reconciliation_agent.core.circuit_breaker import CircuitBreaker, CircuitState


def _expire_cooldown(cb: CircuitBreaker) -> None:
    cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=cb.recovery_timeout + 1)


class TestCircuitBreakerInitialization:
    def test_default_initialization(self):
        """A new breaker is CLOSED with zeroed counters."""
        cb = CircuitBreaker(name="gateway")

        assert cb.state == CircuitState.CLOSED
        assert cb.error_threshold == 0.5
        assert cb.min_calls == 1
        assert cb.recovery_timeout == 60.0
        assert cb.calls == 0
        assert cb.failures == 0
        assert cb.error_ratio == 0.0

    def test_closed_allows_requests(self):
        cb = CircuitBreaker(name="gateway")
        assert cb.allow_request() is True
        assert cb.allow_request() is True


class TestOpening:
    def test_first_failure_opens_by_default(self):
        """The ratio is checked after every call: one failure out of one is 1.0."""
        cb = CircuitBreaker(name="gateway")

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_opens_when_ratio_reaches_threshold(self):
        """CLOSED -> OPEN as soon as errors/calls >= threshold."""
        cb = CircuitBreaker(name="gateway", error_threshold=0.5)

        cb.record_success()
        cb.record_success()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED  # 1/3

        cb.record_failure()  # 2/4 errors
        assert cb.state == CircuitState.OPEN

    def test_stays_closed_below_threshold(self):
        cb = CircuitBreaker(name="gateway", error_threshold=0.5, min_calls=3)

        for _ in range(3):
            cb.record_success()
        cb.record_failure()  # 1/4

        assert cb.state == CircuitState.CLOSED
        assert cb.error_ratio == 0.25

    def test_min_calls_guard_when_configured(self):
        """A single failure (ratio 1.0) does not open a breaker configured to wait for 3 calls."""
        cb = CircuitBreaker(name="gateway", min_calls=3)
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED

    def test_open_rejects_requests(self):
        cb = CircuitBreaker(name="gateway", min_calls=1)
        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False

    def test_rejected_request_does_not_touch_counters(self):
        cb = CircuitBreaker(name="gateway", min_calls=1)
        cb.record_failure()
        calls, failures = cb.calls, cb.failures

        for _ in range(5):
            cb.allow_request()

        assert cb.calls == calls
        assert cb.failures == failures


class TestRecovery:
    def test_open_to_half_open_after_cooldown(self):
        cb = CircuitBreaker(name="gateway", min_calls=1, recovery_timeout=60.0)
        cb.record_failure()
        _expire_cooldown(cb)

        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_single_trial(self):
        cb = CircuitBreaker(name="gateway", min_calls=1)
        cb.record_failure()
        _expire_cooldown(cb)

        assert cb.allow_request() is True
        assert cb.allow_request() is False

    def test_half_open_success_closes_and_resets(self):
        cb = CircuitBreaker(name="gateway", min_calls=1)
        cb.record_failure()
        _expire_cooldown(cb)
        cb.allow_request()

        cb.record_success()

        assert cb.state == CircuitState.CLOSED
        assert cb.calls == 0
        assert cb.failures == 0
        assert cb.allow_request() is True

    def test_half_open_failure_reopens(self):
        """A failed trial returns to OPEN and restarts the cool-down clock."""
        cb = CircuitBreaker(name="gateway", min_calls=1, recovery_timeout=60.0)
        cb.record_failure()
        _expire_cooldown(cb)
        cb.allow_request()

        cb.record_failure()

        assert cb.state == CircuitState.OPEN
        assert cb.allow_request() is False
        assert cb.retry_after() > 59.0

    def test_zero_cooldown_recovers_immediately(self):
        cb = CircuitBreaker(name="gateway", min_calls=1, recovery_timeout=0.0)
        cb.record_failure()
        assert cb.allow_request() is True
        assert cb.state == CircuitState.HALF_OPEN


class TestRetryAfter:
    def test_closed_has_no_wait(self):
        assert CircuitBreaker(name="gateway").retry_after() == 0.0

    def test_open_reports_remaining_cooldown(self):
        cb = CircuitBreaker(name="gateway", min_calls=1, recovery_timeout=60.0)
        cb.record_failure()
        cb._last_failure_time = datetime.now(timezone.utc) - timedelta(seconds=20)

        assert 39.0 <= cb.retry_after() <= 40.5
