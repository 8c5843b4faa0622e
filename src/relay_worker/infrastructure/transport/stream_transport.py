"""
Stream Transport Adapter

asyncio stream based transport for the three relays the supervisor can
establish: stdin/stdout pipes, a TCP socket or a unix socket.
"""

import asyncio
import sys
from typing import Any, Optional, Tuple
from urllib.parse import urlsplit

import structlog

from relay_worker.domain.errors import ConfigError, TransportError
from relay_worker.domain.ports import ITransportPort


logger = structlog.get_logger(__name__)

# StreamReader buffer limit; readexactly() is not bound by it
_READ_LIMIT = 2**20


class StreamTransport(ITransportPort):
    """
    Transport over an asyncio StreamReader / StreamWriter pair.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        name: str = "stream",
        wait_closed: bool = True,
    ):
        """
        Initialize the transport.

        Args:
            reader: Stream the supervisor writes frames to
            writer: Stream the worker writes frames to
            name: Relay description for logs
            wait_closed: Await writer.wait_closed() on close; pipe writers
                have no close waiter
        """
        self._reader = reader
        self._writer = writer
        self.name = name
        self._wait_closed = wait_closed
        self._closed = False

    async def read_exactly(self, size: int) -> bytes:
        try:
            return await self._reader.readexactly(size)
        except asyncio.IncompleteReadError as e:
            return e.partial
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Read from {self.name} failed: {e}") from e

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportError(f"Write to closed transport {self.name}")
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError, RuntimeError) as e:
            raise TransportError(f"Write to {self.name} failed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if not self._writer.is_closing():
                await self._writer.drain()
            self._writer.close()
            if self._wait_closed:
                await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            # Peer already gone, nothing left to flush
            logger.debug("Transport close failed", relay=self.name, error=str(e))


async def _open_pipes() -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader(limit=_READ_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer)

    stdout = sys.__stdout__.buffer
    w_transport, w_protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, stdout)
    writer = asyncio.StreamWriter(w_transport, w_protocol, None, loop)

    # Frames own stdout from here on; stray prints from handlers go to stderr
    sys.stdout = sys.stderr
    return reader, writer


def parse_relay(relay: str) -> Tuple[str, Any]:
    """
    Split a relay address into its kind and target.

    Returns:
        ("pipes", None), ("tcp", (host, port)) or ("unix", path)

    Raises:
        ConfigError: Unsupported or incomplete address
    """
    if relay == "pipes":
        return "pipes", None
    parts = urlsplit(relay)
    if parts.scheme == "tcp":
        if not parts.hostname or parts.port is None:
            raise ConfigError(f"TCP relay needs host and port: {relay!r}")
        return "tcp", (parts.hostname, parts.port)
    if parts.scheme == "unix":
        path = parts.path or parts.netloc
        if not path:
            raise ConfigError(f"Unix relay needs a socket path: {relay!r}")
        return "unix", path
    raise ConfigError(f"Unsupported relay: {relay!r}")


async def open_transport(relay: str, connect_timeout: Optional[float] = 10.0) -> StreamTransport:
    """
    Establish the transport named by ``relay``.

    Raises:
        ConfigError: Relay address is invalid
        TransportError: Connection could not be established
    """
    kind, target = parse_relay(relay)
    try:
        if kind == "pipes":
            reader, writer = await _open_pipes()
        elif kind == "tcp":
            host, port = target
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=_READ_LIMIT), connect_timeout
            )
        else:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(target, limit=_READ_LIMIT), connect_timeout
            )
    except asyncio.TimeoutError as e:
        raise TransportError(f"Timed out connecting to {relay}") from e
    except (ConnectionError, OSError, ValueError) as e:
        raise TransportError(f"Cannot open relay {relay}: {e}") from e

    logger.debug("Transport opened", relay=relay)
    return StreamTransport(reader, writer, name=relay, wait_closed=kind != "pipes")
