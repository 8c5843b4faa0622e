"""
Worker Session

Owns the transport and the worker state, and implements the Idle,
Receiving and Responding steps of the worker state machine. Processing is
left to the caller: the push-style WorkerLoop or the pull-style HttpWorker.
"""

import asyncio
from typing import Optional, Tuple

import structlog

from relay_worker.application.services.error_reporter import ErrorReporter
from relay_worker.application.services.lifecycle_service import LifecycleController
from relay_worker.domain.entities import WorkerState
from relay_worker.domain.errors import (
    ControlError,
    DecodeError,
    HandlerFailure,
    JobError,
    ProtocolError,
    TransportClosed,
    WorkerError,
)
from relay_worker.domain.ports import ITransportPort
from relay_worker.domain.value_objects import (
    ExitCode,
    Frame,
    FrameFlags,
    JobOutcome,
    Request,
    StopReason,
    WorkerMode,
)
from relay_worker.infrastructure.protocol import FrameCodec, JobCodec


logger = structlog.get_logger(__name__)


class WorkerSession:
    """
    One worker's conversation with its supervisor.

    ``receive()`` blocks until the next job (handling control frames and
    undecodable jobs on the way) and returns None once the worker must stop.
    ``respond()`` sends the job's outcome and consults the lifecycle
    controller. Protocol and transport failures propagate to the caller,
    which ends the session with ``fail()``; ``shutdown()`` ends it cleanly.
    """

    def __init__(
        self,
        transport: ITransportPort,
        lifecycle: LifecycleController,
        frame_codec: Optional[FrameCodec] = None,
        job_codec: Optional[JobCodec] = None,
        reporter: Optional[ErrorReporter] = None,
        state: Optional[WorkerState] = None,
    ):
        """
        Initialize the session.

        Args:
            transport: Stream shared with the supervisor, owned by this session
            lifecycle: Recycling limits evaluator
            frame_codec: Envelope codec
            job_codec: Payload codec
            reporter: Error reporter
            state: Worker state, created from the lifecycle clock if None
        """
        self._transport = transport
        self._lifecycle = lifecycle
        self._frame_codec = frame_codec or FrameCodec()
        self._job_codec = job_codec or JobCodec()
        self._reporter = reporter or ErrorReporter(self._job_codec)
        self._state = state or WorkerState.create(lifecycle.clock)
        self._stop_event = asyncio.Event()
        self._exit_code: Optional[ExitCode] = None
        self._log = logger.bind(pid=self._state.pid)

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def stop_reason(self) -> Optional[StopReason]:
        return self._state.stop_reason

    @property
    def exit_code(self) -> Optional[ExitCode]:
        return self._exit_code

    @property
    def current_job_id(self) -> int:
        return self._state.jobs_processed + 1

    def request_stop(self, reason: StopReason = StopReason.SIGNAL) -> None:
        """
        Ask the worker to stop at the next boundary.

        Interrupts an idle wait immediately; a job in flight completes first.
        """
        if self._state.stop_reason is None:
            self._state.stop_reason = reason
            self._log.info("Stop requested", reason=reason.value)
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Idle / Receiving
    # ------------------------------------------------------------------

    async def receive(self) -> Optional[Request]:
        """
        Wait for the next job.

        Returns:
            The decoded Request, or None when the worker must stop

        Raises:
            ProtocolError: Stream alignment lost
            TransportError: Transport failed
        """
        while self._state.stop_reason is None:
            request = await self._receive_once()
            if request is not None:
                return request
        return None

    async def _receive_once(self) -> Optional[Request]:
        self._state.enter(WorkerMode.IDLE)

        reason = self._lifecycle.check_idle(self._state)
        if reason is not None:
            self._stop(reason)
            return None

        header = await self._wait_for_header()
        if header is None:
            return None
        length, flags = header

        self._state.enter(WorkerMode.RECEIVING)
        frame = await self._frame_codec.read_payload(self._transport, length, flags)
        self._state.touch(self._lifecycle.clock())

        if frame.is_control:
            await self._handle_control(frame)
            return None

        try:
            request = self._job_codec.decode_request(frame.payload)
        except DecodeError as e:
            await self.respond(JobOutcome.failure(e))
            return None

        self._state.enter(WorkerMode.PROCESSING)
        self._log.debug("Job received", job_id=self.current_job_id, method=request.method, uri=request.uri)
        return request

    async def _wait_for_header(self) -> Optional[Tuple[int, FrameFlags]]:
        timeout = self._lifecycle.idle_wait_timeout(self._state)
        read = asyncio.ensure_future(self._frame_codec.read_header(self._transport))
        stop = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({read, stop}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not read.done():
                read.cancel()
                await asyncio.wait({read})

        if read in done:
            try:
                return read.result()
            except TransportClosed:
                self._stop(StopReason.TRANSPORT_CLOSED)
                return None

        if not read.cancelled() and read.exception() is not None:
            self._log.debug("Header read failed while stopping", error=repr(read.exception()))

        if self._stop_event.is_set():
            return None

        reason = self._lifecycle.check_idle(self._state)
        if reason is not None:
            self._stop(reason)
        return None

    async def _handle_control(self, frame: Frame) -> None:
        try:
            command = self._job_codec.decode_json(frame.payload)
        except DecodeError as e:
            await self._reply(self._error_frame(ControlError(e.message), control=True))
            return

        if command.get("stop"):
            self._stop(StopReason.STOP_REQUESTED)
        elif command.get("pid"):
            await self._reply(self._job_codec.control_frame({"pid": self._state.pid}))
        elif command.get("stats"):
            snapshot = self._state.snapshot(self._lifecycle.clock())
            await self._reply(self._job_codec.control_frame(snapshot))
        else:
            error = ControlError(
                "Unknown control command",
                details={"keys": sorted(command)},
            )
            await self._reply(self._error_frame(error, control=True))

    async def _reply(self, frame: Frame) -> None:
        self._state.enter(WorkerMode.RESPONDING)
        await self._frame_codec.write_frame(self._transport, frame)

    # ------------------------------------------------------------------
    # Responding
    # ------------------------------------------------------------------

    async def respond(self, outcome: JobOutcome) -> None:
        """
        Send the outcome of the current job and evaluate recycling limits.

        Raises:
            ProtocolError: max_frame_size is too small for any error frame
            TransportError: Write failed; the worker cannot continue
        """
        job_id = self.current_job_id
        self._state.enter(WorkerMode.RESPONDING)
        try:
            frame = self._outcome_frame(outcome)
        except (ValueError, TypeError) as e:
            frame = self._error_frame(HandlerFailure(f"Response could not be encoded: {e}"))

        try:
            data = self._frame_codec.encode_frame(frame)
        except ValueError as e:
            raise ProtocolError(
                f"Job outcome cannot be framed: {e}",
                details={"job_id": job_id, "max_frame_size": self._frame_codec.max_frame_size},
            ) from e
        await self._transport.write(data)
        self._state.complete_job(self._lifecycle.clock())

        self._log.info(
            "Job completed",
            job_id=job_id,
            ok=outcome.ok,
            status=outcome.response.status if outcome.ok else None,
            error=None if outcome.ok else outcome.error.code,
            **(outcome.metrics.to_dict() if outcome.metrics else {}),
        )

        reason = self._lifecycle.after_job(self._state)
        if reason is not None:
            self._stop(reason)

    async def error(self, message: str) -> None:
        """Answer the current job with a job-local error."""
        await self.respond(JobOutcome.failure(HandlerFailure(message)))

    def _outcome_frame(self, outcome: JobOutcome) -> Frame:
        if outcome.ok:
            frame = self._job_codec.response_frame(outcome.response)
            if frame.length > self._frame_codec.max_frame_size:
                raise ValueError(
                    f"response of {frame.length} bytes exceeds max_frame_size {self._frame_codec.max_frame_size}"
                )
            return frame
        return self._error_frame(outcome.error)

    def _error_frame(self, error: JobError, control: bool = False) -> Frame:
        return self._reporter.report(error, control=control, max_size=self._frame_codec.max_frame_size)

    # ------------------------------------------------------------------
    # ShuttingDown / Terminated
    # ------------------------------------------------------------------

    async def shutdown(self) -> ExitCode:
        """Stop cleanly: flush and close the transport, exit code 0."""
        if self._state.is_terminated:
            return self._exit_code
        self._state.enter(WorkerMode.SHUTTING_DOWN)
        self._log.info(
            "Worker stopping",
            reason=self._state.stop_reason.value if self._state.stop_reason else None,
            jobs_processed=self._state.jobs_processed,
        )
        await self._transport.close()
        self._state.enter(WorkerMode.TERMINATED)
        self._exit_code = ExitCode.OK
        return self._exit_code

    async def fail(self, error: WorkerError) -> ExitCode:
        """Terminate after a protocol or transport failure."""
        if self._state.is_terminated:
            return self._exit_code
        self._exit_code = self._reporter.report_fatal(error, self._state)
        self._state.enter(WorkerMode.TERMINATED)
        await self._transport.close()
        return self._exit_code

    def _stop(self, reason: StopReason) -> None:
        if self._state.stop_reason is None:
            self._state.stop_reason = reason
            self._log.info("Stop signalled", reason=reason.value)
