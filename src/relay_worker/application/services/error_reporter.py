"""
Error Reporter

Turns failures into signals the supervisor can see, at the right
containment level.
"""

import json
import sys
from datetime import datetime, timezone
from typing import Optional, TextIO

import structlog

from relay_worker.domain.entities import WorkerState
from relay_worker.domain.errors import (
    ConfigError,
    JobError,
    ProtocolError,
    TransportError,
    WorkerError,
)
from relay_worker.domain.value_objects import ExitCode, Frame
from relay_worker.infrastructure.protocol import JobCodec


logger = structlog.get_logger(__name__)


def exit_code_for(error: BaseException) -> ExitCode:
    """Map a process-level failure to the exit status the supervisor expects."""
    if isinstance(error, ProtocolError):
        return ExitCode.PROTOCOL_ERROR
    if isinstance(error, ConfigError):
        return ExitCode.CONFIG_ERROR
    if isinstance(error, TransportError):
        return ExitCode.TRANSPORT_ERROR
    return ExitCode.PROTOCOL_ERROR


class ErrorReporter:
    """
    Reports job-local failures in-band and fatal failures out-of-band.

    Job-local errors become an ERROR frame and the loop continues. Fatal
    errors are written as one JSON line to the side channel (stderr by
    default), since the frame stream can no longer be trusted.
    """

    def __init__(self, job_codec: JobCodec, side_channel: Optional[TextIO] = None):
        """
        Initialize the error reporter.

        Args:
            job_codec: Codec used to build error frames
            side_channel: Out-of-band stream for fatal reports, stderr if None
        """
        self._job_codec = job_codec
        self._side_channel = side_channel

    def report(self, error: JobError, control: bool = False, max_size: Optional[int] = None) -> Frame:
        """
        Build the error frame for a job-local failure.

        Args:
            error: Failure confined to the current job
            control: Answer to a control frame rather than a job
            max_size: Largest payload the frame may carry, message is cut to fit

        Returns:
            Frame with the ERROR flag set
        """
        if control:
            logger.warning("Control command failed", error=error.code, message=error.message)
        else:
            logger.warning("Job failed", error=error.code, message=error.message)
        return self._job_codec.error_frame(error, control=control, max_size=max_size)

    def report_fatal(self, error: WorkerError, state: Optional[WorkerState] = None) -> ExitCode:
        """
        Report a process-level failure out-of-band.

        Returns:
            Non-zero exit code for the process
        """
        exit_code = exit_code_for(error)
        record = {
            "event": "worker_fatal",
            "at": datetime.now(timezone.utc).isoformat(),
            "exit_code": int(exit_code),
            **error.to_dict(),
        }
        if state is not None:
            record.update(
                pid=state.pid,
                mode=state.mode.value,
                jobs_processed=state.jobs_processed,
            )

        logger.error("Worker failed", error=error.code, message=error.message, exit_code=int(exit_code))

        channel = self._side_channel or sys.stderr
        try:
            channel.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
            channel.flush()
        except (OSError, ValueError) as e:
            logger.error("Side channel unavailable", error=str(e))
        return exit_code
