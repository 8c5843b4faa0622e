"""
Pull-style worker API

For applications that own their main loop::

    worker = await HttpWorker.create()
    while (request := await worker.wait_request()) is not None:
        await worker.respond(Response.text("hello"))
    sys.exit(await worker.close())
"""

from typing import Optional

import structlog

from relay_worker.application.services import WorkerSession
from relay_worker.domain.errors import HandlerFailure, ProtocolError, TransportError
from relay_worker.domain.ports import ITransportPort
from relay_worker.domain.value_objects import (
    ExitCode,
    JobOutcome,
    Request,
    Response,
    StopReason,
    WorkerMode,
)
from relay_worker.infrastructure.config import WorkerSettings, load_settings
from relay_worker.infrastructure.logging import configure_logging
from relay_worker.infrastructure.transport import open_transport
from relay_worker.interfaces.bootstrap import build_session


logger = structlog.get_logger(__name__)


class HttpWorker:
    """
    Worker driven by the application.

    Exactly one answer (``respond()`` or ``error()``) is expected for every
    request returned by ``wait_request()``. Lifecycle limits and control
    frames are handled the same way as in the push-style loop.
    """

    def __init__(self, session: WorkerSession):
        self._session = session
        self._pending: Optional[Request] = None

    @classmethod
    async def create(
        cls,
        settings: Optional[WorkerSettings] = None,
        transport: Optional[ITransportPort] = None,
    ) -> "HttpWorker":
        """
        Connect to the supervisor.

        Args:
            settings: Worker settings, loaded from the environment if None
            transport: Already open transport, opened from ``settings.relay`` if None

        Raises:
            ConfigError: Invalid settings
            TransportError: The relay could not be opened
        """
        settings = settings or load_settings()
        if not structlog.is_configured():
            configure_logging(settings.log_level, settings.log_format)
        if transport is None:
            transport = await open_transport(settings.relay)
        return cls(build_session(transport, settings))

    @property
    def session(self) -> WorkerSession:
        return self._session

    @property
    def exit_code(self) -> Optional[ExitCode]:
        return self._session.exit_code

    def request_stop(self, reason: StopReason = StopReason.SIGNAL) -> None:
        self._session.request_stop(reason)

    async def wait_request(self) -> Optional[Request]:
        """
        Block until the next request arrives.

        Returns:
            The next Request, or None once the worker must stop. After None,
            call ``close()`` and exit with its return value.
        """
        if self._session.state.is_terminated:
            return None
        if self._pending is not None:
            logger.warning("Previous request was not answered", uri=self._pending.uri)
            await self.error("Request was not answered by the application")
            if self._session.state.is_terminated:
                return None

        try:
            request = await self._session.receive()
        except (ProtocolError, TransportError) as e:
            await self._session.fail(e)
            return None

        self._pending = request
        return request

    async def respond(self, response: Response) -> None:
        """Send the response to the current request."""
        await self._answer(JobOutcome.success(response))

    async def error(self, message: str) -> None:
        """Fail the current request without stopping the worker."""
        await self._answer(JobOutcome.failure(HandlerFailure(message)))

    async def _answer(self, outcome: JobOutcome) -> None:
        if self._pending is None:
            raise RuntimeError("No request is awaiting a response")
        self._pending = None
        try:
            await self._session.respond(outcome)
        except (ProtocolError, TransportError) as e:
            await self._session.fail(e)

    async def close(self) -> ExitCode:
        """
        Release the transport.

        A request still in flight is failed first, since the supervisor
        waits for exactly one answer per job.

        Returns:
            The exit code the process should terminate with
        """
        if self._session.state.is_terminated:
            return self._session.exit_code
        if self._pending is not None and self._session.state.mode == WorkerMode.PROCESSING:
            self._session.request_stop(StopReason.STOP_REQUESTED)
            await self.error("Worker closed before answering the request")
            if self._session.state.is_terminated:
                return self._session.exit_code
        return await self._session.shutdown()

    async def __aenter__(self) -> "HttpWorker":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
