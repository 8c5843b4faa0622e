#!/usr/bin/env python3
"""
Relay Worker CLI - Serve an application handler to a process supervisor
"""

import argparse
import asyncio
import signal
import sys
from typing import Any, List, Optional

import structlog

from relay_worker import __version__
from relay_worker.application.services import ErrorReporter
from relay_worker.domain.errors import ConfigError, TransportError
from relay_worker.domain.value_objects import ExitCode, StopReason
from relay_worker.infrastructure.config import WorkerSettings, load_settings
from relay_worker.infrastructure.logging import configure_logging
from relay_worker.infrastructure.protocol import JobCodec
from relay_worker.infrastructure.transport import open_transport
from relay_worker.interfaces.bootstrap import build_worker_loop, load_handler


logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser"""
    parser = argparse.ArgumentParser(
        prog="relay-worker",
        description="Relay Worker - persistent application worker for a process supervisor",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Serve jobs until a lifecycle limit is reached")
    serve.add_argument("handler", help="Application handler as module:attribute")
    serve.add_argument("--app-dir", help="Directory to prepend to sys.path before importing the handler")
    serve.add_argument("--config", "-c", help="YAML settings file (optional 'worker:' section)")

    # Transport
    serve.add_argument("--relay", help="pipes (default), tcp://host:port or unix:///path")
    serve.add_argument("--max-frame-size", type=int, help="Largest accepted payload in bytes")

    # Lifecycle limits
    serve.add_argument("--max-jobs", type=int, help="Stop after N jobs (0 = unlimited)")
    serve.add_argument("--idle-timeout", help="Stop when idle this long, e.g. 200ms, 30s (0 = disabled)")
    serve.add_argument("--ttl", help="Stop after this much uptime, e.g. 1h (0 = unlimited)")
    serve.add_argument("--exec-timeout", help="Bound on one handler call, e.g. 10s (0 = unlimited)")
    serve.add_argument("--cancel-grace", help="Time a timed out sync handler gets to return")
    serve.add_argument("--max-memory", type=float, help="Stop once RSS exceeds this many MiB (0 = unlimited)")

    # Logging
    serve.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    serve.add_argument("--log-format", choices=["text", "json"])
    return parser


def settings_from_args(args: argparse.Namespace) -> WorkerSettings:
    """Merge CLI flags over file and environment settings"""
    return load_settings(
        args.config,
        relay=args.relay,
        max_frame_size=args.max_frame_size,
        max_jobs=args.max_jobs,
        idle_timeout=args.idle_timeout,
        ttl=args.ttl,
        exec_timeout=args.exec_timeout,
        cancel_grace=args.cancel_grace,
        max_memory=args.max_memory,
        log_level=args.log_level,
        log_format=args.log_format,
    )


def _install_signal_handlers(stop: Any) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, stop, StopReason.SIGNAL)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handler not supported", signal=int(signum))


async def serve(handler: Any, settings: WorkerSettings) -> ExitCode:
    """Open the relay and run the worker loop until it stops"""
    try:
        transport = await open_transport(settings.relay)
    except TransportError as e:
        return ErrorReporter(JobCodec()).report_fatal(e)

    worker = build_worker_loop(handler, transport, settings)
    _install_signal_handlers(worker.request_stop)
    return await worker.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI function"""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "serve":
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    # stdout may carry frames; nothing may log before this
    configure_logging()

    reporter = ErrorReporter(JobCodec())
    try:
        settings = settings_from_args(args)
    except ConfigError as e:
        return int(reporter.report_fatal(e))

    configure_logging(settings.log_level, settings.log_format)

    try:
        handler = load_handler(args.handler, app_dir=args.app_dir)
    except ConfigError as e:
        return int(reporter.report_fatal(e))

    return int(asyncio.run(serve(handler, settings)))


def entry_point():
    """CLI entry point"""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
