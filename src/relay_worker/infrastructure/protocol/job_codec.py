"""
Job Codec

Turns frame payloads into Requests and Responses into frame payloads.

Payload layout
--------------
::

    [ context_length : uint32 BE ] [ context : JSON, UTF-8 ] [ body : rest ]

Request context: ``{"method", "uri", "headers", "protocol", "remote_addr"}``.
Response context: ``{"status", "headers"}``. Headers are ordered multimaps
``{"Name": ["v1", "v2"]}``.
"""

import json
import struct
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from relay_worker.application.dto import RequestContextDTO, ResponseContextDTO
from relay_worker.domain.errors import DecodeError, JobError
from relay_worker.domain.value_objects import Frame, FrameFlags, Request, Response


_CONTEXT_LENGTH = struct.Struct(">I")

_DTO = TypeVar("_DTO", bound=BaseModel)


def _pack(context: Dict[str, Any], body: bytes) -> bytes:
    raw = json.dumps(context, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return _CONTEXT_LENGTH.pack(len(raw)) + raw + body


def _unpack(payload: bytes, model: Type[_DTO]) -> Tuple[_DTO, bytes]:
    if len(payload) < _CONTEXT_LENGTH.size:
        raise DecodeError(
            f"Payload of {len(payload)} bytes has no context length prefix",
            details={"payload_length": len(payload)},
        )
    (context_length,) = _CONTEXT_LENGTH.unpack_from(payload)
    end = _CONTEXT_LENGTH.size + context_length
    if end > len(payload):
        raise DecodeError(
            f"Context length {context_length} exceeds payload",
            details={"context_length": context_length, "payload_length": len(payload)},
        )
    raw = payload[_CONTEXT_LENGTH.size:end]
    try:
        context = model.model_validate_json(raw)
    except ValidationError as e:
        raise DecodeError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e
    return context, payload[end:]


class JobCodec:
    """Encodes and decodes the HTTP-shaped job payloads."""

    def decode_request(self, payload: bytes) -> Request:
        """
        Raises:
            DecodeError: Missing prefix, bad JSON or missing required fields
        """
        context, body = _unpack(payload, RequestContextDTO)
        return context.to_domain(body)

    def encode_request(self, request: Request) -> bytes:
        context = RequestContextDTO.from_domain(request)
        return _pack(context.model_dump(), request.body)

    def encode_response(self, response: Response) -> bytes:
        context = ResponseContextDTO.from_domain(response)
        return _pack(context.model_dump(), response.body)

    def decode_response(self, payload: bytes) -> Response:
        context, body = _unpack(payload, ResponseContextDTO)
        return context.to_domain(body)

    def response_frame(self, response: Response) -> Frame:
        return Frame(payload=self.encode_response(response))

    def error_frame(self, error: JobError, control: bool = False, max_size: Optional[int] = None) -> Frame:
        """
        Build the ERROR frame for a job-local failure.

        With ``max_size`` the payload is shrunk to fit: details are dropped,
        the message is cut and ``"truncated": true`` is added.
        """
        flags = FrameFlags.ERROR | FrameFlags.CONTROL if control else FrameFlags.ERROR
        payload = error.to_json().encode("utf-8")
        if max_size is not None and len(payload) > max_size:
            payload = self._fit_error(error, max_size)
        return Frame(payload=payload, flags=flags)

    @staticmethod
    def _fit_error(error: JobError, max_size: int) -> bytes:
        message = error.message
        while True:
            body = {"error": error.code, "message": message, "truncated": True}
            payload = json.dumps(body, ensure_ascii=False).encode("utf-8")
            excess = len(payload) - max_size
            if excess <= 0 or not message:
                return payload
            # every character takes at least one byte
            message = message[: max(len(message) - excess, 0)]

    def control_frame(self, body: Dict[str, Any]) -> Frame:
        return Frame(payload=json.dumps(body).encode("utf-8"), flags=FrameFlags.CONTROL)

    def decode_json(self, payload: bytes) -> Dict[str, Any]:
        """
        Decode an error or control payload.

        Raises:
            DecodeError: Payload is not a JSON object
        """
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodeError(f"Invalid JSON payload: {e}") from e
        if not isinstance(data, dict):
            raise DecodeError("JSON payload must be an object")
        return data
