"""Tests for per-provider request budgets and the rate-limit breaker."""

from __future__ import annotations

import pytest

from seawater.app.sources.limits import BreakerState, RateLimitBreaker, RequestBudget


class TestRequestBudget:
    def test_allows_up_to_max(self, clock):
        budget = RequestBudget(3, window_seconds=60, clock=clock)
        assert [budget.try_acquire() for _ in range(4)] == [True, True, True, False]
        assert budget.remaining == 0

    def test_window_slides(self, clock):
        budget = RequestBudget(2, window_seconds=60, clock=clock)
        budget.try_acquire()
        clock.advance(30)
        budget.try_acquire()
        assert budget.try_acquire() is False
        assert budget.retry_after() == pytest.approx(30)
        clock.advance(30)
        assert budget.try_acquire() is True

    def test_retry_after_zero_when_available(self, clock):
        assert RequestBudget(1, clock=clock).retry_after() == 0.0

    def test_invalid_max(self):
        with pytest.raises(ValueError):
            RequestBudget(0)


class TestRateLimitBreaker:
    def _breaker(self, clock):
        return RateLimitBreaker("first_street", threshold=3, cooldown_seconds=300, clock=clock)

    def test_opens_after_threshold(self, clock):
        breaker = self._breaker(clock)
        for _ in range(2):
            breaker.record_rate_limited()
        assert breaker.state is BreakerState.CLOSED
        breaker.record_rate_limited()
        assert breaker.state is BreakerState.OPEN
        assert breaker.allow() is False
        assert breaker.retry_after() == pytest.approx(300)

    def test_success_resets_count(self, clock):
        breaker = self._breaker(clock)
        breaker.record_rate_limited()
        breaker.record_rate_limited()
        breaker.record_success()
        breaker.record_rate_limited()
        assert breaker.state is BreakerState.CLOSED

    def test_other_failures_do_not_trip(self, clock):
        breaker = self._breaker(clock)
        for _ in range(10):
            breaker.record_other_failure()
        assert breaker.allow() is True

    def test_half_open_single_probe(self, clock):
        breaker = self._breaker(clock)
        for _ in range(3):
            breaker.record_rate_limited()
        clock.advance(300)
        assert breaker.state is BreakerState.HALF_OPEN
        assert breaker.allow() is True
        assert breaker.allow() is False

    def test_probe_success_closes(self, clock):
        breaker = self._breaker(clock)
        for _ in range(3):
            breaker.record_rate_limited()
        clock.advance(301)
        assert breaker.allow()
        breaker.record_success()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.allow() is True

    def test_probe_429_reopens(self, clock):
        breaker = self._breaker(clock)
        for _ in range(3):
            breaker.record_rate_limited()
        clock.advance(301)
        assert breaker.allow()
        breaker.record_rate_limited()
        assert breaker.state is BreakerState.OPEN
        assert breaker.retry_after() == pytest.approx(300)

    def test_probe_other_failure_frees_slot(self, clock):
        breaker = self._breaker(clock)
        for _ in range(3):
            breaker.record_rate_limited()
        clock.advance(301)
        assert breaker.allow()
        breaker.record_other_failure()
        assert breaker.allow() is True

    def test_snapshot(self, clock):
        snap = self._breaker(clock).snapshot()
        assert snap == {"state": "closed", "consecutive_rate_limits": 0, "retry_after_seconds": 0.0}
