"""
Worker wiring

Builds sessions and loops from settings, and resolves handler references.
"""

import sys
from importlib import import_module
from pathlib import Path
from typing import Any, Optional

from relay_worker.application.services import (
    ErrorReporter,
    JobExecutor,
    LifecycleController,
    WorkerLoop,
    WorkerSession,
)
from relay_worker.domain.errors import ConfigError
from relay_worker.domain.ports import IHandlerPort, ITransportPort
from relay_worker.infrastructure.config import WorkerSettings
from relay_worker.infrastructure.monitoring import current_rss_mb
from relay_worker.infrastructure.protocol import FrameCodec, JobCodec


def load_handler(entry: str, app_dir: Optional[str] = None) -> Any:
    """
    Resolve a ``module:attribute`` reference to a handler.

    Classes implementing IHandlerPort are instantiated without arguments.

    Raises:
        ConfigError: Malformed reference, import failure or missing attribute
    """
    if ":" not in entry:
        raise ConfigError(f"Handler must be 'module:attribute', got {entry!r}")
    module_name, attr_path = entry.split(":", 1)

    if app_dir is not None:
        path = str(Path(app_dir).resolve())
        if path not in sys.path:
            sys.path.insert(0, path)

    try:
        target: Any = import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import handler module {module_name!r}: {e}") from e
    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError as e:
            raise ConfigError(f"Module {module_name!r} has no attribute {attr_path!r}") from e

    if isinstance(target, type) and issubclass(target, IHandlerPort):
        target = target()
    if not isinstance(target, IHandlerPort) and not callable(target):
        raise ConfigError(f"Handler {entry!r} is not callable")
    return target


def build_session(transport: ITransportPort, settings: WorkerSettings) -> WorkerSession:
    job_codec = JobCodec()
    lifecycle = LifecycleController(
        settings.lifecycle_limits(),
        memory_probe=current_rss_mb if settings.max_memory else None,
    )
    return WorkerSession(
        transport,
        lifecycle,
        frame_codec=FrameCodec(max_frame_size=settings.max_frame_size),
        job_codec=job_codec,
        reporter=ErrorReporter(job_codec),
    )


def build_worker_loop(handler: Any, transport: ITransportPort, settings: WorkerSettings) -> WorkerLoop:
    executor = JobExecutor(
        handler,
        exec_timeout=settings.exec_timeout or None,
        cancel_grace=settings.cancel_grace,
    )
    return WorkerLoop(build_session(transport, settings), executor)
