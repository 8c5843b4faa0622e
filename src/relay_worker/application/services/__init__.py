"""
Application Services

Orchestrates domain objects to serve jobs.
"""

from .error_reporter import ErrorReporter, exit_code_for
from .job_executor import JobExecutor
from .lifecycle_service import LifecycleController
from .worker_loop import WorkerLoop
from .worker_session import WorkerSession

__all__ = [
    "ErrorReporter",
    "JobExecutor",
    "LifecycleController",
    "WorkerLoop",
    "WorkerSession",
    "exit_code_for",
]
