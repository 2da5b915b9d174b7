"""JSON-RPC 2.0 types for the assistant-facing edge."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response.

    ``id`` is always serialized (null when the request id could not be
    recovered) and exactly one of ``result`` / ``error`` is present.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None
    result: Any | None = None
    error: JsonRpcError | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump(exclude_none=True)
        else:
            data["result"] = self.result
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class JsonRpcErrorCode:
    """JSON-RPC 2.0 error codes used by the gateway and bridge."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Transport-communication failures
    SERVER_UNREACHABLE = -32000
    INVALID_RESPONSE = -32001
    TRANSPORT_UNAVAILABLE = -32002
    HTTP_STATUS_ERROR = -32003

    # The bridge reports a non-JSON gateway body with the same code
    NON_JSON_RESPONSE = TRANSPORT_UNAVAILABLE


class JsonRpcProtocolError(Exception):
    """Exception for JSON-RPC protocol errors."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def create_error_response(
    request_id: str | int | None,
    code: int,
    message: str,
    data: Any | None = None,
) -> JsonRpcResponse:
    """Create a JSON-RPC error response."""
    return JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(code=code, message=message, data=data),
    )


def create_notification(method: str, params: dict[str, Any] | None = None) -> JsonRpcNotification:
    """Create a JSON-RPC notification."""
    return JsonRpcNotification(method=method, params=params)


def recover_request_id(message: Any) -> str | int | None:
    """Best-effort id extraction from a (possibly invalid) request object."""
    if isinstance(message, dict):
        request_id = message.get("id")
        if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
            return request_id
    return None
