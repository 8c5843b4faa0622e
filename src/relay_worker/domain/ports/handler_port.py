"""
Handler Port Interface

Defines the contract of application logic invoked once per job.
This is an input port - implemented by the application being served.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Union

from relay_worker.domain.value_objects import JobContext, Request, Response


HandlerResult = Union[Response, Awaitable[Response]]
HandlerCallable = Callable[..., HandlerResult]


class IHandlerPort(ABC):
    """
    Port interface for class-based application handlers.

    Plain functions ``handler(request)`` or ``handler(request, context)``,
    sync or async, are accepted as well.
    """

    @abstractmethod
    def handle(self, request: Request, context: JobContext) -> HandlerResult:
        """
        Produce the response for one job.

        Args:
            request: Decoded request, owned by this job only
            context: Job id, deadline and cancellation flag

        Returns:
            Response (or an awaitable resolving to one)
        """
        pass
