"""
Test utilities for relay-worker tests.

Provides an in-memory transport, frame builders and a worker factory.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

from relay_worker.application.services import (
    ErrorReporter,
    JobExecutor,
    LifecycleController,
    WorkerLoop,
    WorkerSession,
)
from relay_worker.domain.errors import TransportError
from relay_worker.domain.ports import ITransportPort
from relay_worker.domain.value_objects import Frame, FrameFlags, LifecycleLimits, Request, Response
from relay_worker.infrastructure.protocol import FrameCodec, JobCodec


class MemoryTransport(ITransportPort):
    """
    Transport backed by an asyncio.StreamReader and a byte buffer.

    Must be created inside a running event loop.
    """

    def __init__(self, data: bytes = b"", eof: bool = True, fail_writes: bool = False):
        """
        Args:
            data: Bytes the "supervisor" has already sent
            eof: Close the input side after ``data``
            fail_writes: Every write raises TransportError
        """
        self.reader = asyncio.StreamReader()
        if data:
            self.reader.feed_data(data)
        if eof:
            self.reader.feed_eof()
        self.written = bytearray()
        self.fail_writes = fail_writes
        self.closed = False

    def feed(self, data: bytes) -> None:
        self.reader.feed_data(data)

    def feed_eof(self) -> None:
        self.reader.feed_eof()

    async def read_exactly(self, size: int) -> bytes:
        try:
            return await self.reader.readexactly(size)
        except asyncio.IncompleteReadError as e:
            return e.partial

    async def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise TransportError("Broken pipe")
        if self.closed:
            raise TransportError("Write to closed transport")
        self.written += data

    async def close(self) -> None:
        self.closed = True

    def frames(self) -> List[Frame]:
        """Frames the worker wrote so far."""
        return FrameCodec().split_frames(bytes(self.written))


def job_bytes(
    method: str = "GET",
    uri: str = "/",
    headers: Optional[Dict[str, List[str]]] = None,
    body: bytes = b"",
) -> bytes:
    """One complete job frame."""
    request = Request(method=method, uri=uri, headers=headers or {}, body=body)
    return FrameCodec().encode(JobCodec().encode_request(request))


def control_bytes(command: Dict[str, Any]) -> bytes:
    """One complete control frame."""
    return FrameCodec().encode(json.dumps(command).encode("utf-8"), FrameFlags.CONTROL)


def response_of(frame: Frame) -> Response:
    assert not frame.is_error, frame.payload
    return JobCodec().decode_response(frame.payload)


def error_of(frame: Frame) -> Dict[str, Any]:
    assert frame.is_error
    return JobCodec().decode_json(frame.payload)


def build_worker(
    handler: Any,
    transport: ITransportPort,
    reporter: Optional[ErrorReporter] = None,
    max_jobs: int = 0,
    idle_timeout: float = 0.0,
    ttl: float = 0.0,
    exec_timeout: float = 0.0,
    cancel_grace: float = 1.0,
    max_frame_size: Optional[int] = None,
) -> WorkerLoop:
    """Wire a worker loop without reading settings from the environment."""
    limits = LifecycleLimits(max_jobs=max_jobs, idle_timeout=idle_timeout, ttl=ttl, exec_timeout=exec_timeout)
    job_codec = JobCodec()
    frame_codec = FrameCodec(max_frame_size) if max_frame_size else FrameCodec()
    session = WorkerSession(
        transport,
        LifecycleController(limits),
        frame_codec=frame_codec,
        job_codec=job_codec,
        reporter=reporter or ErrorReporter(job_codec),
    )
    executor = JobExecutor(
        handler,
        exec_timeout=exec_timeout or None,
        cancel_grace=cancel_grace,
        collect_memory=False,
    )
    return WorkerLoop(session, executor)


def hello(request: Request) -> Response:
    return Response.text("Hello")
