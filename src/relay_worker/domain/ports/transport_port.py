"""
Transport Port Interface

Defines the contract for the byte stream shared with the supervisor.
This is an output port - implemented by infrastructure layer.
"""

from abc import ABC, abstractmethod


class ITransportPort(ABC):
    """
    Port interface for the supervisor byte stream.

    One transport is owned exclusively by one worker instance.
    """

    @abstractmethod
    async def read_exactly(self, size: int) -> bytes:
        """
        Read ``size`` bytes, blocking until they are available.

        Args:
            size: Number of bytes to read

        Returns:
            Exactly ``size`` bytes, or fewer only when the stream reached EOF

        Raises:
            TransportError: If the underlying stream fails
        """
        pass

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write and flush ``data``.

        Raises:
            TransportError: If the peer is gone or the write fails
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Flush pending output and release the stream."""
        pass
