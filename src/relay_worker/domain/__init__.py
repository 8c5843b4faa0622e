"""
Worker Domain Layer

Frames, requests, responses, worker state and the error taxonomy.
"""

from .entities import WorkerState
from .value_objects import (
    ExitCode,
    Frame,
    FrameFlags,
    JobContext,
    JobMetrics,
    JobOutcome,
    LifecycleLimits,
    Request,
    Response,
    StopReason,
    WorkerMode,
)

__all__ = [
    "ExitCode",
    "Frame",
    "FrameFlags",
    "JobContext",
    "JobMetrics",
    "JobOutcome",
    "LifecycleLimits",
    "Request",
    "Response",
    "StopReason",
    "WorkerMode",
    "WorkerState",
]
