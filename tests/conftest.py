"""Pytest configuration and fixtures."""

import io
import logging
import os
import sys
from pathlib import Path

import pytest
import structlog

# Add src to path for imports when the package is not installed
_root = Path(__file__).resolve().parent.parent
src_path = _root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from relay_worker.application.services import ErrorReporter
from relay_worker.infrastructure.protocol import FrameCodec, JobCodec


@pytest.fixture
def frame_codec() -> FrameCodec:
    return FrameCodec()


@pytest.fixture
def job_codec() -> JobCodec:
    return JobCodec()


@pytest.fixture
def side_channel() -> io.StringIO:
    """Captures fatal reports instead of writing them to stderr."""
    return io.StringIO()


@pytest.fixture
def reporter(job_codec, side_channel) -> ErrorReporter:
    return ErrorReporter(job_codec, side_channel=side_channel)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep RELAY_WORKER_* variables of the developer's shell out of tests."""
    for name in list(os.environ):
        if name.startswith("RELAY_WORKER_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_logging():
    """Undo configure_logging() so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
