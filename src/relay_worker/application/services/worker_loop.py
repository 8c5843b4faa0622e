"""
Worker Loop

Push-style driver of the worker state machine: receive a job, run the
handler, respond, repeat until the lifecycle says stop.
"""

import structlog

from relay_worker.application.services.job_executor import JobExecutor
from relay_worker.application.services.worker_session import WorkerSession
from relay_worker.domain.errors import ProtocolError, TransportError
from relay_worker.domain.value_objects import ExitCode, StopReason


logger = structlog.get_logger(__name__)


class WorkerLoop:
    """
    Sequences one job at a time through Idle → Receiving → Processing →
    Responding.

    Job-local failures never leave ``run()``: they are answered with an error
    frame and the loop continues. Protocol and transport failures end the
    loop with a non-zero exit code.
    """

    def __init__(self, session: WorkerSession, executor: JobExecutor):
        """
        Initialize the worker loop.

        Args:
            session: Transport, state and lifecycle of this worker
            executor: Handler invocation with exec_timeout enforcement
        """
        self._session = session
        self._executor = executor

    @property
    def session(self) -> WorkerSession:
        return self._session

    def request_stop(self, reason: StopReason = StopReason.SIGNAL) -> None:
        self._session.request_stop(reason)

    async def run(self) -> ExitCode:
        """
        Serve jobs until a stop condition is met.

        Returns:
            ExitCode.OK on clean shutdown, a non-zero code otherwise
        """
        session = self._session
        logger.info("Worker ready", pid=session.state.pid)
        try:
            while True:
                request = await session.receive()
                if request is None:
                    break
                outcome = await self._executor.execute(request, job_id=session.current_job_id)
                await session.respond(outcome)
                if self._executor.abandoned:
                    session.request_stop(StopReason.HANDLER_ABANDONED)
                elif self._executor.exit_requested:
                    session.request_stop(StopReason.HANDLER_EXIT)
        except (ProtocolError, TransportError) as e:
            return await session.fail(e)
        return await session.shutdown()
