"""
Unit tests for the LifecycleController.

Uses a fake monotonic clock so limits can be crossed deterministically.
"""

import pytest

from relay_worker.application.services import LifecycleController
from relay_worker.domain.entities import WorkerState
from relay_worker.domain.value_objects import LifecycleLimits, StopReason


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def controller(clock, memory_probe=None, **limits) -> LifecycleController:
    return LifecycleController(LifecycleLimits(**limits), clock=clock, memory_probe=memory_probe)


class TestAfterJob:
    """Tests for limits evaluated at job boundaries."""

    def test_unlimited_never_stops(self, clock):
        lifecycle = controller(clock)
        state = WorkerState.create(clock)

        for _ in range(1000):
            state.complete_job(clock())
            assert lifecycle.after_job(state) is None

    def test_max_jobs(self, clock):
        lifecycle = controller(clock, max_jobs=3)
        state = WorkerState.create(clock)

        reasons = []
        for _ in range(3):
            state.complete_job(clock())
            reasons.append(lifecycle.after_job(state))

        assert reasons == [None, None, StopReason.MAX_JOBS]

    def test_ttl_checked_after_job(self, clock):
        lifecycle = controller(clock, ttl=60)
        state = WorkerState.create(clock)

        clock.advance(59)
        assert lifecycle.after_job(state) is None
        clock.advance(1)
        assert lifecycle.after_job(state) == StopReason.TTL

    def test_max_jobs_wins_over_ttl(self, clock):
        lifecycle = controller(clock, max_jobs=1, ttl=1)
        state = WorkerState.create(clock)
        clock.advance(5)
        state.complete_job(clock())

        assert lifecycle.after_job(state) == StopReason.MAX_JOBS

    def test_max_memory(self, clock):
        rss = [100.0]
        lifecycle = controller(clock, memory_probe=lambda: rss[0], max_memory_mb=128)
        state = WorkerState.create(clock)

        assert lifecycle.after_job(state) is None
        rss[0] = 130.0
        assert lifecycle.after_job(state) == StopReason.MAX_MEMORY

    def test_max_memory_without_probe_is_ignored(self, clock):
        lifecycle = controller(clock, max_memory_mb=1)

        assert lifecycle.after_job(WorkerState.create(clock)) is None

    def test_unavailable_rss_is_ignored(self, clock):
        lifecycle = controller(clock, memory_probe=lambda: None, max_memory_mb=1)

        assert lifecycle.after_job(WorkerState.create(clock)) is None


class TestIdle:
    """Tests for limits evaluated while waiting for a job."""

    def test_no_limits_waits_forever(self, clock):
        lifecycle = controller(clock)

        assert lifecycle.idle_wait_timeout(WorkerState.create(clock)) is None
        assert lifecycle.check_idle(WorkerState.create(clock)) is None

    def test_idle_timeout_budget_shrinks(self, clock):
        lifecycle = controller(clock, idle_timeout=0.2)
        state = WorkerState.create(clock)

        assert lifecycle.idle_wait_timeout(state) == pytest.approx(0.2)
        clock.advance(0.15)
        assert lifecycle.idle_wait_timeout(state) == pytest.approx(0.05)
        clock.advance(1)
        assert lifecycle.idle_wait_timeout(state) == 0.0

    def test_activity_resets_idle_budget(self, clock):
        lifecycle = controller(clock, idle_timeout=10)
        state = WorkerState.create(clock)

        clock.advance(8)
        state.complete_job(clock())
        clock.advance(5)

        assert lifecycle.check_idle(state) is None
        assert lifecycle.idle_wait_timeout(state) == pytest.approx(5)

    def test_ttl_bounds_the_idle_wait(self, clock):
        lifecycle = controller(clock, idle_timeout=30, ttl=10)
        state = WorkerState.create(clock)
        clock.advance(4)

        assert lifecycle.idle_wait_timeout(state) == pytest.approx(6)

    def test_check_idle_reports_idle_timeout(self, clock):
        lifecycle = controller(clock, idle_timeout=0.2)
        state = WorkerState.create(clock)
        clock.advance(0.2)

        assert lifecycle.check_idle(state) == StopReason.IDLE_TIMEOUT

    def test_ttl_reported_before_idle_timeout(self, clock):
        lifecycle = controller(clock, idle_timeout=1, ttl=1)
        state = WorkerState.create(clock)
        clock.advance(2)

        assert lifecycle.check_idle(state) == StopReason.TTL


def test_exec_timeout_zero_means_unbounded(clock):
    assert controller(clock).exec_timeout is None
    assert controller(clock, exec_timeout=2.5).exec_timeout == 2.5


def test_negative_limits_rejected(clock):
    with pytest.raises(ValueError):
        controller(clock, max_jobs=-1)
