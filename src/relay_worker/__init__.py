# Relay Worker - Main package
"""
Relay Worker

A persistent worker process that serves HTTP-shaped jobs to a process
supervisor over a framed byte stream:
- Frame and job codecs
- Push-style worker loop with lifecycle limits
- Pull-style SDK
"""

__version__ = "0.1.0"

from relay_worker.domain import ExitCode, Request, Response, StopReason
from relay_worker.domain.ports import IHandlerPort

__all__ = ["ExitCode", "IHandlerPort", "Request", "Response", "StopReason", "__version__"]
