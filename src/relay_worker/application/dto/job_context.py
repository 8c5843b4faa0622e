"""
Job Context DTOs

JSON context blocks carried in front of request and response bodies.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from relay_worker.domain.value_objects import Request, Response


class RequestContextDTO(BaseModel):
    """
    Request context sent by the supervisor.

    Maps the wire JSON to the domain Request value object.
    """

    model_config = ConfigDict(extra="ignore")

    method: str = Field(..., min_length=1, description="Request method")
    uri: str = Field(..., min_length=1, description="Target URI")
    headers: Dict[str, List[str]] = Field(default_factory=dict, description="Header multimap")
    protocol: str = Field(default="HTTP/1.1", description="Protocol version")
    remote_addr: Optional[str] = Field(default=None, description="Client address")

    def to_domain(self, body: bytes) -> Request:
        return Request(
            method=self.method,
            uri=self.uri,
            headers={name: list(values) for name, values in self.headers.items()},
            body=body,
            protocol=self.protocol,
            remote_addr=self.remote_addr,
        )

    @classmethod
    def from_domain(cls, request: Request) -> "RequestContextDTO":
        return cls(
            method=request.method,
            uri=request.uri,
            headers={name: list(values) for name, values in request.headers.items()},
            protocol=request.protocol,
            remote_addr=request.remote_addr,
        )


class ResponseContextDTO(BaseModel):
    """
    Response context sent back to the supervisor.
    """

    model_config = ConfigDict(extra="ignore")

    status: int = Field(..., ge=100, le=599, description="HTTP status code")
    headers: Dict[str, List[str]] = Field(default_factory=dict, description="Header multimap")

    def to_domain(self, body: bytes) -> Response:
        return Response(
            status=self.status,
            headers={name: list(values) for name, values in self.headers.items()},
            body=body,
        )

    @classmethod
    def from_domain(cls, response: Response) -> "ResponseContextDTO":
        return cls(status=response.status, headers=response.headers)
