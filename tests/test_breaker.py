import pytest

from coco.analysis.breaker import BreakerState, CircuitBreaker
from coco.errors import CircuitOpenError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestCircuitBreaker:
    def setup_method(self):
        self.clock = FakeClock()
        self.breaker = CircuitBreaker(threshold=3, cooldown=30.0, clock=self.clock)

    def _fail(self, times):
        for _ in range(times):
            self.breaker.before_call()
            self.breaker.record_failure()

    def test_stays_closed_below_threshold(self):
        self._fail(2)
        assert self.breaker.state == BreakerState.CLOSED
        assert self.breaker.consecutive_failures == 2
        assert not self.breaker.is_open()

    def test_opens_at_threshold(self):
        self._fail(3)
        assert self.breaker.state == BreakerState.OPEN
        assert self.breaker.is_open()
        assert self.breaker.retry_in() == pytest.approx(30.0)

    def test_open_breaker_fails_fast(self):
        self._fail(3)
        self.clock.now += 10
        with pytest.raises(CircuitOpenError) as info:
            self.breaker.before_call()
        assert info.value.retry_in == pytest.approx(20.0)
        assert "unavailable" in str(info.value)

    def test_success_resets_the_count(self):
        self._fail(2)
        self.breaker.record_success()
        self._fail(2)
        assert self.breaker.state == BreakerState.CLOSED

    def test_half_open_admits_a_single_trial(self):
        self._fail(3)
        self.clock.now += 31
        assert not self.breaker.is_open()

        self.breaker.before_call()
        assert self.breaker.state == BreakerState.HALF_OPEN
        assert self.breaker.is_open()
        with pytest.raises(CircuitOpenError):
            self.breaker.before_call()

    def test_successful_trial_closes(self):
        self._fail(3)
        self.clock.now += 31
        self.breaker.before_call()
        self.breaker.record_success()
        assert self.breaker.state == BreakerState.CLOSED
        assert self.breaker.consecutive_failures == 0

    def test_failed_trial_reopens_for_a_full_cooldown(self):
        self._fail(3)
        self.clock.now += 31
        self.breaker.before_call()
        self.breaker.record_failure()
        assert self.breaker.state == BreakerState.OPEN
        assert self.breaker.retry_in() == pytest.approx(30.0)
