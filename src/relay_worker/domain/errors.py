"""
Domain Errors

Error taxonomy of the worker. Errors fall into two containment levels:

- Job-local (``JobError``): confined to one job, reported to the supervisor
  as an error frame, the loop continues.
- Protocol/transport level (``ProtocolError``, ``TransportError``): byte
  alignment of the stream can no longer be trusted, the process exits with a
  non-zero status so the supervisor recycles it.
"""

import json
from typing import Any, Dict, Optional


class WorkerError(Exception):
    """Base class for all worker errors, with message, details and code."""

    code = "worker_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary format."""
        error_dict: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        error_dict.update({k: v for k, v in self.details.items() if v is not None})
        return error_dict

    def to_json(self) -> str:
        """Convert error to JSON string."""
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, details={self.details!r})"


# ---------------------------------------------------------------------------
# Job-local failures
# ---------------------------------------------------------------------------


class JobError(WorkerError):
    """Failure confined to a single job. Never fatal to the worker."""

    code = "job_error"


class DecodeError(JobError):
    """Job payload could not be decoded into a Request."""

    code = "decode_error"


class HandlerFailure(JobError):
    """Application handler raised or returned something that is not a Response."""

    code = "handler_failure"


class ExecTimeoutExceeded(JobError):
    """Handler did not complete within exec_timeout."""

    code = "exec_timeout"


class ControlError(JobError):
    """Control frame could not be understood."""

    code = "control_error"


# ---------------------------------------------------------------------------
# Process-level failures
# ---------------------------------------------------------------------------


class ProtocolError(WorkerError):
    """Frame boundaries can no longer be trusted."""

    code = "protocol_error"


class TruncatedFrame(ProtocolError):
    """Stream ended before a complete frame was received."""

    code = "truncated_frame"


class MalformedHeader(ProtocolError):
    """Frame header carries unknown flags or an impossible length."""

    code = "malformed_header"


class TransportError(WorkerError):
    """Transport failed (broken pipe, reset, failed write or connect)."""

    code = "transport_error"


class TransportClosed(WorkerError):
    """Peer closed the stream on a frame boundary."""

    code = "transport_closed"


class ConfigError(WorkerError):
    """Invalid worker settings or handler reference."""

    code = "config_error"


class InvalidTransition(WorkerError):
    """Worker state machine was driven through an illegal transition."""

    code = "invalid_transition"
