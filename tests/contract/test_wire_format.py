"""
Contract tests for the bytes exchanged with the supervisor.

These pin the wire format; a change here breaks every deployed supervisor.
"""

import json
import struct

import pytest

from relay_worker.domain.errors import ExecTimeoutExceeded
from relay_worker.domain.value_objects import FrameFlags, Response
from relay_worker.infrastructure.protocol import FrameCodec, JobCodec


def test_frame_header_is_uint32_be_length_then_uint8_flags():
    data = FrameCodec().encode(b"x" * 258, FrameFlags.CONTROL)

    assert data[:5] == b"\x00\x00\x01\x02\x02"
    assert len(data) == 5 + 258


def test_flag_values():
    assert int(FrameFlags.ERROR) == 0x01
    assert int(FrameFlags.CONTROL) == 0x02


def test_request_payload_from_supervisor():
    context = b'{"method":"GET","uri":"/hello","headers":{"Host":["example.test"]},"protocol":"HTTP/1.1"}'
    payload = struct.pack(">I", len(context)) + context + b""

    request = JobCodec().decode_request(payload)

    assert (request.method, request.uri, request.header("host")) == ("GET", "/hello", "example.test")


def test_response_payload_to_supervisor():
    frame = JobCodec().response_frame(Response.text("Hello"))
    data = FrameCodec().encode_frame(frame)

    context = b'{"status":200,"headers":{"Content-Type":["text/plain; charset=utf-8"]}}'
    payload = struct.pack(">I", len(context)) + context + b"Hello"
    assert data == struct.pack(">IB", len(payload), 0) + payload


def test_error_payload_to_supervisor():
    frame = JobCodec().error_frame(ExecTimeoutExceeded("Job exceeded exec_timeout of 2.0s", details={"exec_timeout": 2.0}))
    data = FrameCodec().encode_frame(frame)

    assert data[4] == 0x01
    assert json.loads(data[5:]) == {
        "error": "exec_timeout",
        "message": "Job exceeded exec_timeout of 2.0s",
        "exec_timeout": 2.0,
    }


@pytest.mark.parametrize("command", [{"stop": True}, {"pid": True}, {"stats": True}])
def test_control_commands_are_json_objects(command):
    data = FrameCodec().encode(json.dumps(command).encode(), FrameFlags.CONTROL)
    frame = FrameCodec().decode(data)

    assert frame.is_control
    assert JobCodec().decode_json(frame.payload) == command
