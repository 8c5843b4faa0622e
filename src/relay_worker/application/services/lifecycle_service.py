"""
Lifecycle Service

Decides when a worker must stop accepting jobs so the supervisor can
recycle it.
"""

import time
from typing import Callable, Optional

import structlog

from relay_worker.domain.entities import WorkerState
from relay_worker.domain.value_objects import LifecycleLimits, StopReason


logger = structlog.get_logger(__name__)


class LifecycleController:
    """
    Evaluates recycling limits against the worker state.

    Handles:
    - max_jobs: stop after N completed jobs
    - idle_timeout: stop when no job arrives in time (bounds the idle wait)
    - ttl: stop once uptime exceeds the limit
    - max_memory: stop once RSS exceeds the limit after a job

    All checks are advisory: they are evaluated between jobs or while idle,
    never while a job is being processed.
    """

    def __init__(
        self,
        limits: LifecycleLimits,
        clock: Callable[[], float] = time.monotonic,
        memory_probe: Optional[Callable[[], Optional[float]]] = None,
    ):
        """
        Initialize lifecycle controller.

        Args:
            limits: Limits supplied at worker start
            clock: Monotonic clock, injectable for tests
            memory_probe: Returns current RSS in MiB, required for max_memory
        """
        limits.validate()
        self.limits = limits
        self.clock = clock
        self._memory_probe = memory_probe

    @property
    def exec_timeout(self) -> Optional[float]:
        return self.limits.exec_timeout or None

    def idle_wait_timeout(self, state: WorkerState) -> Optional[float]:
        """
        How long the next idle wait may block.

        Returns:
            Seconds (possibly 0) or None to wait indefinitely
        """
        now = self.clock()
        budgets = []
        if self.limits.idle_timeout:
            budgets.append(self.limits.idle_timeout - state.idle_for(now))
        if self.limits.ttl:
            budgets.append(self.limits.ttl - state.uptime(now))
        if not budgets:
            return None
        return max(0.0, min(budgets))

    def check_idle(self, state: WorkerState) -> Optional[StopReason]:
        """Stop reason once an idle wait has run out, if any limit expired."""
        now = self.clock()
        if self.limits.ttl and state.uptime(now) >= self.limits.ttl:
            return StopReason.TTL
        if self.limits.idle_timeout and state.idle_for(now) >= self.limits.idle_timeout:
            return StopReason.IDLE_TIMEOUT
        return None

    def after_job(self, state: WorkerState) -> Optional[StopReason]:
        """Stop reason evaluated at a job boundary, if any limit is reached."""
        if self.limits.max_jobs and state.jobs_processed >= self.limits.max_jobs:
            return StopReason.MAX_JOBS
        if self.limits.ttl and state.uptime(self.clock()) >= self.limits.ttl:
            return StopReason.TTL
        if self.limits.max_memory_mb and self._memory_probe is not None:
            rss = self._memory_probe()
            if rss is not None and rss >= self.limits.max_memory_mb:
                logger.info("Memory limit reached", rss_mb=round(rss, 1), limit_mb=self.limits.max_memory_mb)
                return StopReason.MAX_MEMORY
        return None
