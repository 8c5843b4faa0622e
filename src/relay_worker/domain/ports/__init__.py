"""
Domain Ports

Port interfaces defining contracts between layers.
"""

from .handler_port import HandlerCallable, IHandlerPort
from .transport_port import ITransportPort

__all__ = [
    "HandlerCallable",
    "IHandlerPort",
    "ITransportPort",
]
