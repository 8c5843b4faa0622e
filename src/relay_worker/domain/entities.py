"""
Worker Entities

The single mutable entity of a worker process: its state.
"""

import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional

from relay_worker.domain.errors import InvalidTransition
from relay_worker.domain.value_objects import StopReason, WorkerMode


_TRANSITIONS: Dict[WorkerMode, FrozenSet[WorkerMode]] = {
    WorkerMode.IDLE: frozenset(
        {WorkerMode.RECEIVING, WorkerMode.SHUTTING_DOWN, WorkerMode.TERMINATED}
    ),
    WorkerMode.RECEIVING: frozenset(
        {
            WorkerMode.PROCESSING,
            WorkerMode.RESPONDING,
            WorkerMode.IDLE,
            WorkerMode.SHUTTING_DOWN,
            WorkerMode.TERMINATED,
        }
    ),
    WorkerMode.PROCESSING: frozenset({WorkerMode.RESPONDING, WorkerMode.TERMINATED}),
    WorkerMode.RESPONDING: frozenset(
        {WorkerMode.IDLE, WorkerMode.SHUTTING_DOWN, WorkerMode.TERMINATED}
    ),
    WorkerMode.SHUTTING_DOWN: frozenset({WorkerMode.TERMINATED}),
    WorkerMode.TERMINATED: frozenset(),
}


@dataclass
class WorkerState:
    """
    Process-wide state of one worker instance.

    Owned by the worker session and passed explicitly to the lifecycle
    controller, so tests can build independent instances. Timestamps are
    monotonic clock readings.
    """

    started_at: float
    last_activity_at: float
    jobs_processed: int = 0
    mode: WorkerMode = WorkerMode.IDLE
    stop_reason: Optional[StopReason] = None
    pid: int = field(default_factory=os.getpid)

    @classmethod
    def create(cls, clock: Callable[[], float] = time.monotonic) -> "WorkerState":
        now = clock()
        return cls(started_at=now, last_activity_at=now)

    def enter(self, mode: WorkerMode) -> None:
        """Move to ``mode``, rejecting transitions the state machine forbids."""
        if mode == self.mode:
            return
        if mode not in _TRANSITIONS[self.mode]:
            raise InvalidTransition(
                f"Cannot move from {self.mode.value} to {mode.value}",
                details={"from": self.mode.value, "to": mode.value},
            )
        self.mode = mode

    def touch(self, now: float) -> None:
        self.last_activity_at = now

    def complete_job(self, now: float) -> None:
        self.jobs_processed += 1
        self.last_activity_at = now

    def uptime(self, now: float) -> float:
        return now - self.started_at

    def idle_for(self, now: float) -> float:
        return now - self.last_activity_at

    @property
    def is_terminated(self) -> bool:
        return self.mode == WorkerMode.TERMINATED

    def snapshot(self, now: float) -> Dict[str, Any]:
        """Serializable view used by the stats control command."""
        return {
            "pid": self.pid,
            "mode": self.mode.value,
            "jobs_processed": self.jobs_processed,
            "uptime_s": round(self.uptime(now), 3),
            "idle_s": round(self.idle_for(now), 3),
            "stop_reason": self.stop_reason.value if self.stop_reason else None,
        }
