"""
Pull-style SDK for applications that drive their own loop.
"""

from .http_worker import HttpWorker

__all__ = ["HttpWorker"]
