"""
Frame Codec

Length-prefixed binary envelope exchanged with the supervisor.

Wire format
-----------
Every frame is a fixed 5-byte header followed by the payload::

    [ length : uint32 BE ] [ flags : uint8 ] [ payload : length bytes ]

Byte order and widths are a fixed agreement with the supervisor. Flags other
than ERROR (0x01) and CONTROL (0x02) are rejected.
"""

import struct
from typing import List, Tuple

from relay_worker.domain.errors import MalformedHeader, TransportClosed, TruncatedFrame
from relay_worker.domain.ports import ITransportPort
from relay_worker.domain.value_objects import KNOWN_FLAGS, Frame, FrameFlags
from relay_worker.infrastructure.config.settings import DEFAULT_MAX_FRAME_SIZE


_HEADER = struct.Struct(">IB")
HEADER_SIZE = _HEADER.size


class FrameCodec:
    """
    Encodes and decodes frames, and reads/writes them over a transport.

    Decoding never yields a frame with fewer than ``length`` payload bytes.
    After TruncatedFrame or MalformedHeader the stream must be abandoned.
    """

    def __init__(self, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE):
        self.max_frame_size = max_frame_size

    # ------------------------------------------------------------------
    # Pure encoding
    # ------------------------------------------------------------------

    def encode(self, payload: bytes, flags: FrameFlags = FrameFlags.NONE) -> bytes:
        """Serialize one frame. Deterministic for equal inputs."""
        if int(flags) & ~int(KNOWN_FLAGS):
            raise ValueError(f"Unknown frame flags: {int(flags):#04x}")
        if len(payload) > self.max_frame_size:
            raise ValueError(f"Payload of {len(payload)} bytes exceeds max_frame_size {self.max_frame_size}")
        return _HEADER.pack(len(payload), int(flags)) + bytes(payload)

    def encode_frame(self, frame: Frame) -> bytes:
        return self.encode(frame.payload, frame.flags)

    def parse_header(self, header: bytes) -> Tuple[int, FrameFlags]:
        """
        Validate a raw header.

        Returns:
            (length, flags)

        Raises:
            MalformedHeader: Unknown flag bits or length above max_frame_size
        """
        length, raw_flags = _HEADER.unpack(header)
        if raw_flags & ~int(KNOWN_FLAGS):
            raise MalformedHeader(
                f"Unknown flag bits in header: {raw_flags:#04x}",
                details={"flags": raw_flags},
            )
        if length > self.max_frame_size:
            raise MalformedHeader(
                f"Frame length {length} exceeds max_frame_size {self.max_frame_size}",
                details={"length": length, "max_frame_size": self.max_frame_size},
            )
        return length, FrameFlags(raw_flags)

    def decode(self, data: bytes) -> Frame:
        """Decode a buffer holding exactly one frame."""
        frame, rest = self._take(data)
        if rest:
            raise MalformedHeader(
                f"{len(rest)} trailing bytes after frame",
                details={"trailing": len(rest)},
            )
        return frame

    def split_frames(self, data: bytes) -> List[Frame]:
        """Decode a concatenation of complete frames."""
        frames = []
        while data:
            frame, data = self._take(data)
            frames.append(frame)
        return frames

    def _take(self, data: bytes) -> Tuple[Frame, bytes]:
        if len(data) < HEADER_SIZE:
            raise TruncatedFrame(
                f"Header needs {HEADER_SIZE} bytes, got {len(data)}",
                details={"received": len(data)},
            )
        length, flags = self.parse_header(data[:HEADER_SIZE])
        end = HEADER_SIZE + length
        if len(data) < end:
            raise TruncatedFrame(
                f"Payload needs {length} bytes, got {len(data) - HEADER_SIZE}",
                details={"length": length, "received": len(data) - HEADER_SIZE},
            )
        return Frame(payload=data[HEADER_SIZE:end], flags=flags), data[end:]

    # ------------------------------------------------------------------
    # Stream I/O
    # ------------------------------------------------------------------

    async def read_header(self, transport: ITransportPort) -> Tuple[int, FrameFlags]:
        """
        Wait for the next frame header.

        This is the only place the worker waits for the supervisor. Cancelling
        it leaves unread bytes on the transport.

        Raises:
            TransportClosed: EOF before the first header byte
            TruncatedFrame: EOF inside the header
            MalformedHeader: Header failed validation
        """
        header = await transport.read_exactly(HEADER_SIZE)
        if not header:
            raise TransportClosed("Supervisor closed the stream")
        if len(header) < HEADER_SIZE:
            raise TruncatedFrame(
                f"Stream ended after {len(header)} of {HEADER_SIZE} header bytes",
                details={"received": len(header)},
            )
        return self.parse_header(header)

    async def read_payload(self, transport: ITransportPort, length: int, flags: FrameFlags) -> Frame:
        """
        Read exactly ``length`` payload bytes for an already parsed header.

        Raises:
            TruncatedFrame: EOF before ``length`` bytes arrived
        """
        payload = await transport.read_exactly(length) if length else b""
        if len(payload) < length:
            raise TruncatedFrame(
                f"Stream ended after {len(payload)} of {length} payload bytes",
                details={"length": length, "received": len(payload)},
            )
        return Frame(payload=payload, flags=flags)

    async def read_frame(self, transport: ITransportPort) -> Frame:
        length, flags = await self.read_header(transport)
        return await self.read_payload(transport, length, flags)

    async def write_frame(self, transport: ITransportPort, frame: Frame) -> None:
        await transport.write(self.encode_frame(frame))
