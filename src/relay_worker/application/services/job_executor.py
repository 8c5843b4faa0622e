"""
Job Executor

Runs the application handler for one job and turns whatever happens into a
JobOutcome. Nothing raised by the handler escapes this service.
"""

import asyncio
import inspect
import threading
import time
from typing import Any, Awaitable, Callable, Optional

import structlog

from relay_worker.domain.errors import ExecTimeoutExceeded, HandlerFailure
from relay_worker.domain.ports import HandlerCallable, IHandlerPort
from relay_worker.domain.value_objects import JobContext, JobOutcome, Request, Response
from relay_worker.infrastructure.monitoring import MetricsCollector


logger = structlog.get_logger(__name__)


def _accepts_context(func: Callable[..., Any]) -> bool:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        return False
    positional = [
        p for p in params if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2 or any(p.kind == p.VAR_POSITIONAL for p in params)


def _is_async(func: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    call = getattr(func, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


class _HandlerExit(Exception):
    """SystemExit or KeyboardInterrupt raised by a handler, carried out of its task or thread."""

    def __init__(self, cause: BaseException):
        super().__init__(repr(cause))
        self.cause = cause


async def _guard(awaitable: Awaitable[Any]) -> Any:
    # a Task re-raises these out of the event loop
    try:
        return await awaitable
    except (SystemExit, KeyboardInterrupt) as e:
        raise _HandlerExit(e) from e


class JobExecutor:
    """
    Invokes the handler with exec_timeout enforcement.

    Coroutine handlers are cancelled by asyncio when the timeout elapses.
    Synchronous handlers run on a daemon thread per job and are asked to stop
    through ``JobContext.cancel_event``. A synchronous handler that ignores
    cancellation for longer than ``cancel_grace`` is abandoned and
    ``abandoned`` turns true; the worker must then be recycled.

    A handler raising SystemExit or KeyboardInterrupt gets a job-local
    failure like any other exception, and ``exit_requested`` turns true.
    """

    def __init__(
        self,
        handler: Any,
        exec_timeout: Optional[float] = None,
        cancel_grace: float = 1.0,
        collect_memory: bool = True,
    ):
        """
        Initialize the job executor.

        Args:
            handler: IHandlerPort instance or callable taking (request) or
                (request, context), sync or async
            exec_timeout: Seconds a single job may run, None for unlimited
            cancel_grace: Seconds a timed out sync handler gets to return
            collect_memory: Whether job metrics sample RSS
        """
        func: HandlerCallable = handler.handle if isinstance(handler, IHandlerPort) else handler
        if not callable(func):
            raise TypeError(f"Handler {handler!r} is not callable")
        self._func = func
        self._pass_context = _accepts_context(func)
        self._is_async = _is_async(func)
        self._exec_timeout = exec_timeout
        self._cancel_grace = cancel_grace
        self._collect_memory = collect_memory
        self._abandoned = False
        self._exit_requested = False

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    @property
    def exit_requested(self) -> bool:
        return self._exit_requested

    async def execute(self, request: Request, job_id: int) -> JobOutcome:
        """
        Run one job to completion.

        Args:
            request: Decoded request
            job_id: Sequence number of the job within this worker

        Returns:
            JobOutcome carrying the Response or a job-local error
        """
        deadline = time.monotonic() + self._exec_timeout if self._exec_timeout else None
        context = JobContext(job_id=job_id, deadline=deadline)

        collector = MetricsCollector(collect_memory=self._collect_memory)
        with collector:
            try:
                if self._is_async:
                    result = await self._run_async(request, context)
                else:
                    result = await self._run_sync(request, context)
            except ExecTimeoutExceeded as e:
                error = e
            except _HandlerExit as e:
                self._exit_requested = True
                logger.warning(
                    "Handler requested exit, worker will be recycled",
                    job_id=job_id,
                    exception=type(e.cause).__name__,
                )
                error = self._failure(e.cause)
            except (Exception, GeneratorExit) as e:
                logger.error(
                    "Handler raised",
                    job_id=job_id,
                    method=request.method,
                    uri=request.uri,
                    exc_info=True,
                )
                error = self._failure(e)
            else:
                error = None
                if not isinstance(result, Response):
                    error = HandlerFailure(
                        f"Handler returned {type(result).__name__}, expected Response",
                        details={"returned": type(result).__name__},
                    )

        if error is not None:
            return JobOutcome.failure(error, metrics=collector.metrics)
        return JobOutcome.success(result, metrics=collector.metrics)

    @staticmethod
    def _failure(e: BaseException) -> HandlerFailure:
        return HandlerFailure(f"{type(e).__name__}: {e}", details={"exception": type(e).__name__})

    def _args(self, request: Request, context: JobContext) -> tuple:
        return (request, context) if self._pass_context else (request,)

    async def _run_async(self, request: Request, context: JobContext) -> Any:
        try:
            return await asyncio.wait_for(_guard(self._func(*self._args(request, context))), self._exec_timeout)
        except asyncio.TimeoutError:
            context.cancel()
            raise self._timeout_error(context)

    async def _run_sync(self, request: Request, context: JobContext) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def _resolve(value: Any = None, exc: Optional[BaseException] = None) -> None:
            if future.done():
                return
            if exc is not None:
                future.set_exception(exc)
            else:
                future.set_result(value)

        def _hand_over(value: Any, exc: Optional[BaseException]) -> None:
            try:
                loop.call_soon_threadsafe(_resolve, value, exc)
            except RuntimeError:
                # Loop already closed: the job was abandoned and answered
                pass

        def _target() -> None:
            try:
                value = self._func(*self._args(request, context))
            except (SystemExit, KeyboardInterrupt) as e:
                _hand_over(None, _HandlerExit(e))
            except BaseException as e:  # re-raised on the event loop thread
                _hand_over(None, e)
            else:
                _hand_over(value, None)

        thread = threading.Thread(target=_target, name=f"relay-job-{context.job_id}", daemon=True)
        thread.start()

        try:
            return await asyncio.wait_for(asyncio.shield(future), self._exec_timeout)
        except asyncio.TimeoutError:
            context.cancel()
            await self._await_cancellation(future, context)
            raise self._timeout_error(context)

    async def _await_cancellation(self, future: asyncio.Future, context: JobContext) -> None:
        done, _ = await asyncio.wait({future}, timeout=self._cancel_grace)
        if not done:
            self._abandoned = True
            logger.warning(
                "Handler ignored cancellation, worker will be recycled",
                job_id=context.job_id,
                cancel_grace=self._cancel_grace,
            )
            return
        if not future.cancelled() and future.exception() is not None:
            logger.debug(
                "Cancelled handler raised",
                job_id=context.job_id,
                error=repr(future.exception()),
            )

    def _timeout_error(self, context: JobContext) -> ExecTimeoutExceeded:
        return ExecTimeoutExceeded(
            f"Job exceeded exec_timeout of {self._exec_timeout}s",
            details={"exec_timeout": self._exec_timeout, "job_id": context.job_id},
        )
