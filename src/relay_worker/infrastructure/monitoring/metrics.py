"""
Per-job metrics collector.

Collects wall-clock time, CPU time and resident memory around one handler
call using time and psutil.
"""

import time
from typing import Optional

import psutil
import structlog

from relay_worker.domain.value_objects import JobMetrics


logger = structlog.get_logger(__name__)

_MB = 1024 * 1024


def current_rss_mb() -> Optional[float]:
    """Resident set size of this process in MiB, None if unavailable."""
    try:
        return psutil.Process().memory_info().rss / _MB
    except (psutil.Error, OSError) as e:
        logger.debug("RSS not available", error=str(e))
        return None


class MetricsCollector:
    """
    Context manager for collecting job metrics.

    Examples:
        >>> with MetricsCollector() as collector:
        ...     run_handler()
        >>> collector.metrics.duration_ms
        12.5

    CPU time is process-wide, so it also counts work done by other threads
    during the job.
    """

    def __init__(self, collect_memory: bool = True):
        """
        Initialize metrics collector.

        Args:
            collect_memory: Whether to sample RSS when the job finishes
        """
        self.collect_memory = collect_memory
        self._start_time: Optional[float] = None
        self._start_cpu: Optional[float] = None
        self.metrics: Optional[JobMetrics] = None

    def __enter__(self) -> "MetricsCollector":
        self._start_time = time.perf_counter()
        self._start_cpu = time.process_time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.metrics = JobMetrics(
            duration_ms=(time.perf_counter() - self._start_time) * 1000,
            cpu_time_ms=(time.process_time() - self._start_cpu) * 1000,
            rss_mb=current_rss_mb() if self.collect_memory else None,
        )
        return False  # Don't suppress exceptions
