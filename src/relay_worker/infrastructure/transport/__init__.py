"""
Transport Infrastructure
"""

from .stream_transport import StreamTransport, open_transport, parse_relay

__all__ = ["StreamTransport", "open_transport", "parse_relay"]
