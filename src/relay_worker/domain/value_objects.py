"""
Worker Value Objects

Immutable value objects exchanged between the codec, the loop and
application handlers.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import parse_qs, urlsplit

from relay_worker.domain.errors import JobError


class FrameFlags(IntFlag):
    """Bitset carried in every frame header."""

    NONE = 0x00
    ERROR = 0x01
    CONTROL = 0x02


KNOWN_FLAGS = FrameFlags.ERROR | FrameFlags.CONTROL


class WorkerMode(str, Enum):
    """Position of the worker in its receive/process/respond cycle."""

    IDLE = "idle"
    RECEIVING = "receiving"
    PROCESSING = "processing"
    RESPONDING = "responding"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class StopReason(str, Enum):
    """Why the worker stopped accepting jobs."""

    MAX_JOBS = "max_jobs"
    IDLE_TIMEOUT = "idle_timeout"
    TTL = "ttl"
    MAX_MEMORY = "max_memory"
    STOP_REQUESTED = "stop_requested"
    SIGNAL = "signal"
    TRANSPORT_CLOSED = "transport_closed"
    HANDLER_ABANDONED = "handler_abandoned"
    HANDLER_EXIT = "handler_exit"


class ExitCode(IntEnum):
    """Process exit status reported to the supervisor."""

    OK = 0
    PROTOCOL_ERROR = 1
    CONFIG_ERROR = 2
    TRANSPORT_ERROR = 3


Headers = Dict[str, List[str]]
FrozenHeaders = Mapping[str, Tuple[str, ...]]


def _lookup_header(headers: Mapping[str, Sequence[str]], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, values in headers.items():
        if key.lower() == lowered and values:
            return values[0]
    return None


@dataclass(frozen=True)
class Frame:
    """
    Atomic unit of transport-level communication.

    Attributes:
        payload: Frame body
        flags: Header bitset
    """

    payload: bytes
    flags: FrameFlags = FrameFlags.NONE

    def __post_init__(self):
        if not isinstance(self.payload, (bytes, bytearray)):
            raise TypeError("Frame payload must be bytes")
        object.__setattr__(self, "payload", bytes(self.payload))
        object.__setattr__(self, "flags", FrameFlags(self.flags))

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def is_error(self) -> bool:
        return bool(self.flags & FrameFlags.ERROR)

    @property
    def is_control(self) -> bool:
        return bool(self.flags & FrameFlags.CONTROL)


@dataclass(frozen=True)
class Request:
    """
    HTTP-shaped job handed to the application handler.

    Attributes:
        method: Request method (GET, POST, ...)
        uri: Target URI as sent by the client
        headers: Read-only ordered multimap of header name to value tuples
        body: Raw request body
        protocol: Protocol version string
        remote_addr: Client address, if the supervisor supplied it
    """

    method: str
    uri: str
    headers: FrozenHeaders = field(default_factory=dict, hash=False)
    body: bytes = b""
    protocol: str = "HTTP/1.1"
    remote_addr: Optional[str] = None

    def __post_init__(self):
        frozen = {name: tuple(values) for name, values in self.headers.items()}
        object.__setattr__(self, "headers", MappingProxyType(frozen))

    def header(self, name: str) -> Optional[str]:
        """First value of a header, case-insensitive."""
        return _lookup_header(self.headers, name)

    @property
    def path(self) -> str:
        return urlsplit(self.uri).path or "/"

    @property
    def query(self) -> Dict[str, List[str]]:
        return parse_qs(urlsplit(self.uri).query, keep_blank_values=True)


@dataclass(frozen=True)
class Response:
    """
    Result produced by the application handler.

    Attributes:
        status: HTTP status code
        headers: Ordered multimap of header name to values
        body: Raw response body
    """

    status: int = 200
    headers: Headers = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        if not 100 <= self.status <= 599:
            raise ValueError(f"Invalid status code: {self.status}")
        if not isinstance(self.body, (bytes, bytearray)):
            raise TypeError("Response body must be bytes, use Response.text() for strings")
        object.__setattr__(self, "body", bytes(self.body))

    @classmethod
    def text(
        cls,
        content: str,
        status: int = 200,
        headers: Optional[Headers] = None,
        content_type: str = "text/plain; charset=utf-8",
    ) -> "Response":
        merged: Headers = {"Content-Type": [content_type]}
        merged.update(headers or {})
        return cls(status=status, headers=merged, body=content.encode("utf-8"))

    def header(self, name: str) -> Optional[str]:
        return _lookup_header(self.headers, name)


@dataclass(frozen=True)
class LifecycleLimits:
    """
    Recycling limits supplied by the supervisor at start.

    Zero disables a limit. Durations are seconds.
    """

    max_jobs: int = 0
    idle_timeout: float = 0.0
    ttl: float = 0.0
    exec_timeout: float = 0.0
    max_memory_mb: float = 0.0

    def validate(self) -> None:
        for name in ("max_jobs", "idle_timeout", "ttl", "exec_timeout", "max_memory_mb"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class JobMetrics:
    """Resource usage of one handler invocation."""

    duration_ms: float
    cpu_time_ms: float
    rss_mb: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_ms": round(self.duration_ms, 3),
            "cpu_time_ms": round(self.cpu_time_ms, 3),
            "rss_mb": self.rss_mb,
        }


@dataclass(frozen=True)
class JobOutcome:
    """
    Result of the Processing step: either a response or a job-local error.
    """

    response: Optional[Response] = None
    error: Optional[JobError] = None
    metrics: Optional[JobMetrics] = None

    def __post_init__(self):
        if (self.response is None) == (self.error is None):
            raise ValueError("JobOutcome needs exactly one of response or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, response: Response, metrics: Optional[JobMetrics] = None) -> "JobOutcome":
        return cls(response=response, metrics=metrics)

    @classmethod
    def failure(cls, error: JobError, metrics: Optional[JobMetrics] = None) -> "JobOutcome":
        return cls(error=error, metrics=metrics)


@dataclass(frozen=True)
class JobContext:
    """
    Per-job context passed to handlers that accept a second argument.

    Synchronous handlers should poll ``cancelled`` in long loops; it is set
    once exec_timeout has elapsed.
    """

    job_id: int
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before exec_timeout, None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())
