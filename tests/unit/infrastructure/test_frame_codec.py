"""
Unit tests for the frame codec.
"""

import struct

import pytest

from relay_worker.domain.errors import MalformedHeader, TransportClosed, TruncatedFrame
from relay_worker.domain.value_objects import Frame, FrameFlags
from relay_worker.infrastructure.protocol import HEADER_SIZE, FrameCodec

from utils import MemoryTransport


class TestEncode:
    """Tests for FrameCodec.encode."""

    def test_header_layout(self, frame_codec):
        data = frame_codec.encode(b"hello", FrameFlags.ERROR)

        assert HEADER_SIZE == 5
        assert data == b"\x00\x00\x00\x05\x01hello"

    def test_empty_payload(self, frame_codec):
        assert frame_codec.encode(b"") == b"\x00\x00\x00\x00\x00"

    def test_deterministic(self, frame_codec):
        assert frame_codec.encode(b"x", FrameFlags.CONTROL) == frame_codec.encode(b"x", FrameFlags.CONTROL)

    def test_unknown_flags_rejected(self, frame_codec):
        with pytest.raises(ValueError, match="Unknown frame flags"):
            frame_codec.encode(b"x", 0x04)

    def test_oversized_payload_rejected(self):
        with pytest.raises(ValueError, match="max_frame_size"):
            FrameCodec(max_frame_size=4).encode(b"12345")

    def test_encode_frame(self, frame_codec):
        frame = Frame(payload=b"ok", flags=FrameFlags.CONTROL)

        assert frame_codec.encode_frame(frame) == b"\x00\x00\x00\x02\x02ok"


class TestDecode:
    """Tests for FrameCodec buffer decoding."""

    def test_decode_single_frame(self, frame_codec):
        frame = frame_codec.decode(b"\x00\x00\x00\x03\x03abc")

        assert frame.payload == b"abc"
        assert frame.is_error and frame.is_control

    def test_split_frames(self, frame_codec):
        data = frame_codec.encode(b"one") + frame_codec.encode(b"") + frame_codec.encode(b"three", FrameFlags.ERROR)

        frames = frame_codec.split_frames(data)

        assert [f.payload for f in frames] == [b"one", b"", b"three"]
        assert frames[2].is_error

    def test_short_header(self, frame_codec):
        with pytest.raises(TruncatedFrame):
            frame_codec.decode(b"\x00\x00")

    def test_payload_shorter_than_length(self, frame_codec):
        with pytest.raises(TruncatedFrame) as exc_info:
            frame_codec.decode(b"\x00\x00\x00\x0a\x00abc")

        assert exc_info.value.details == {"length": 10, "received": 3}

    def test_trailing_bytes(self, frame_codec):
        with pytest.raises(MalformedHeader):
            frame_codec.decode(frame_codec.encode(b"abc") + b"\x00")

    def test_unknown_flag_bits(self, frame_codec):
        with pytest.raises(MalformedHeader) as exc_info:
            frame_codec.parse_header(struct.pack(">IB", 0, 0x80))

        assert exc_info.value.details["flags"] == 0x80

    def test_length_above_limit(self):
        codec = FrameCodec(max_frame_size=1024)

        with pytest.raises(MalformedHeader):
            codec.parse_header(struct.pack(">IB", 1025, 0))

    def test_length_at_limit(self):
        assert FrameCodec(max_frame_size=1024).parse_header(struct.pack(">IB", 1024, 0)) == (1024, FrameFlags.NONE)


class TestStreamIO:
    """Tests for reading frames from a transport."""

    @pytest.mark.asyncio
    async def test_read_consecutive_frames(self, frame_codec):
        transport = MemoryTransport(frame_codec.encode(b"first") + frame_codec.encode(b"second", FrameFlags.CONTROL))

        first = await frame_codec.read_frame(transport)
        second = await frame_codec.read_frame(transport)

        assert first.payload == b"first"
        assert second.payload == b"second" and second.is_control

    @pytest.mark.asyncio
    async def test_read_waits_for_split_writes(self, frame_codec):
        transport = MemoryTransport(eof=False)
        data = frame_codec.encode(b"fragmented")
        transport.feed(data[:3])
        transport.feed(data[3:8])
        transport.feed(data[8:])

        frame = await frame_codec.read_frame(transport)

        assert frame.payload == b"fragmented"

    @pytest.mark.asyncio
    async def test_eof_on_boundary_is_clean_close(self, frame_codec):
        transport = MemoryTransport(b"")

        with pytest.raises(TransportClosed):
            await frame_codec.read_frame(transport)

    @pytest.mark.asyncio
    async def test_eof_inside_header(self, frame_codec):
        transport = MemoryTransport(b"\x00\x00")

        with pytest.raises(TruncatedFrame):
            await frame_codec.read_frame(transport)

    @pytest.mark.asyncio
    async def test_eof_inside_payload(self, frame_codec):
        transport = MemoryTransport(b"\x00\x00\x00\x1d\x00GET /hello")

        with pytest.raises(TruncatedFrame):
            await frame_codec.read_frame(transport)

    @pytest.mark.asyncio
    async def test_write_frame(self, frame_codec):
        transport = MemoryTransport()

        await frame_codec.write_frame(transport, Frame(payload=b"out", flags=FrameFlags.ERROR))

        assert bytes(transport.written) == b"\x00\x00\x00\x03\x01out"
