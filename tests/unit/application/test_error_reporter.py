"""
Unit tests for the ErrorReporter.
"""

import json
from unittest.mock import patch

import pytest

from relay_worker.application.services import exit_code_for
from relay_worker.domain.entities import WorkerState
from relay_worker.domain.errors import (
    ConfigError,
    ControlError,
    DecodeError,
    MalformedHeader,
    TransportError,
    TruncatedFrame,
)
from relay_worker.domain.value_objects import ExitCode, FrameFlags


@pytest.mark.parametrize(
    "error, code",
    [
        (TruncatedFrame("x"), ExitCode.PROTOCOL_ERROR),
        (MalformedHeader("x"), ExitCode.PROTOCOL_ERROR),
        (ConfigError("x"), ExitCode.CONFIG_ERROR),
        (TransportError("x"), ExitCode.TRANSPORT_ERROR),
    ],
)
def test_exit_code_for(error, code):
    assert exit_code_for(error) == code


class TestReport:
    """Tests for in-band job-local reports."""

    def test_job_error_frame(self, reporter):
        frame = reporter.report(DecodeError("bad context", details={"context_length": 9}))

        assert frame.flags == FrameFlags.ERROR
        assert json.loads(frame.payload) == {
            "error": "decode_error",
            "message": "bad context",
            "context_length": 9,
        }

    def test_control_error_frame(self, reporter):
        frame = reporter.report(ControlError("Unknown control command"), control=True)

        assert frame.flags == FrameFlags.ERROR | FrameFlags.CONTROL

    @pytest.mark.parametrize(
        "control, event",
        [(False, "Job failed"), (True, "Control command failed")],
    )
    def test_log_event_depends_on_frame_kind(self, reporter, control, event):
        with patch("relay_worker.application.services.error_reporter.logger") as log:
            reporter.report(ControlError("Unknown control command"), control=control)

        log.warning.assert_called_once()
        assert log.warning.call_args.args[0] == event

    def test_max_size_is_passed_to_the_frame(self, reporter):
        frame = reporter.report(DecodeError("y" * 300), max_size=100)

        assert frame.length <= 100
        assert json.loads(frame.payload)["truncated"] is True


class TestReportFatal:
    """Tests for out-of-band fatal reports."""

    def test_writes_one_json_line(self, reporter, side_channel):
        code = reporter.report_fatal(TruncatedFrame("Stream ended", details={"length": 29, "received": 10}))

        assert code == ExitCode.PROTOCOL_ERROR
        lines = side_channel.getvalue().splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["event"] == "worker_fatal"
        assert record["error"] == "truncated_frame"
        assert record["exit_code"] == 1
        assert record["length"] == 29
        assert "at" in record

    def test_includes_worker_state(self, reporter, side_channel):
        state = WorkerState.create()
        state.complete_job(state.started_at)

        reporter.report_fatal(TransportError("Broken pipe"), state)

        record = json.loads(side_channel.getvalue())
        assert record["pid"] == state.pid
        assert record["jobs_processed"] == 1
        assert record["mode"] == "idle"
        assert record["exit_code"] == 3

    def test_closed_side_channel_still_returns_code(self, reporter, side_channel):
        side_channel.close()

        assert reporter.report_fatal(ConfigError("bad")) == ExitCode.CONFIG_ERROR
