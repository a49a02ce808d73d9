"""JSON-RPC 2.0 message types and LSP parameter decoding."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from cattrs.errors import BaseValidationError
from lsprotocol.converters import get_converter
from pygls.exceptions import JsonRpcException, JsonRpcInvalidParams

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# Shared lsprotocol-aware cattrs converter
converter = get_converter()

T = TypeVar("T")


class InvalidMessage(ValueError):
    """Raised when a decoded payload is not a JSON-RPC message."""


# =============================================================================
# Message Types
# =============================================================================


@dataclass
class JsonRpcRequest:
    """A JSON-RPC 2.0 request."""

    id: str | int
    method: str
    params: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


@dataclass
class JsonRpcResponse:
    """A JSON-RPC 2.0 response."""

    id: str | int | None
    result: Any = None
    error: dict[str, Any] | None = None
    jsonrpc: str = JSONRPC_VERSION

    @classmethod
    def failure(cls, id: str | int | None, exc: JsonRpcException) -> JsonRpcResponse:
        """Error response carrying ``exc`` rendered as a JSON-RPC error object."""
        return cls(id=id, error=converter.unstructure(exc.to_response_error()))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            d["error"] = self.error
        else:
            d["result"] = self.result
        return d


@dataclass
class JsonRpcNotification:
    """A JSON-RPC 2.0 notification (no id, no response expected)."""

    method: str
    params: Any = None
    jsonrpc: str = JSONRPC_VERSION

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"jsonrpc": self.jsonrpc, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


Message = JsonRpcRequest | JsonRpcResponse | JsonRpcNotification


def parse_message(data: Any) -> Message:
    """Classify a decoded JSON payload.

    Args:
        data: Result of ``json.loads`` on one framed message

    Returns:
        A request (method and id), notification (method, no id) or
        response (id, no method)

    Raises:
        InvalidMessage: If ``data`` is none of those
    """
    if not isinstance(data, dict):
        raise InvalidMessage(f"expected a JSON object, got {type(data).__name__}")

    method = data.get("method")
    if method is not None:
        if not isinstance(method, str):
            raise InvalidMessage(f"method must be a string, got {type(method).__name__}")
        if "id" in data:
            return JsonRpcRequest(id=data["id"], method=method, params=data.get("params"))
        return JsonRpcNotification(method=method, params=data.get("params"))

    if "id" in data:
        return JsonRpcResponse(id=data["id"], result=data.get("result"), error=data.get("error"))
    raise InvalidMessage("message has neither a method nor an id")


# =============================================================================
# Parameters
# =============================================================================


def structure_params(params: Any, params_type: type[T]) -> T:
    """Decode raw ``params`` into an lsprotocol type.

    Raises:
        JsonRpcInvalidParams: If the payload does not fit ``params_type``
    """
    if not isinstance(params, dict):
        raise JsonRpcInvalidParams(
            message=f"Invalid params: expected an object, got {type(params).__name__}"
        )
    try:
        return converter.structure(params, params_type)
    except (BaseValidationError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.debug("Could not structure %s: %s", params_type.__name__, e)
        raise JsonRpcInvalidParams(message=f"Invalid params for {params_type.__name__}") from e


def unstructure(value: Any) -> Any:
    """Render an lsprotocol value as plain JSON data."""
    return converter.unstructure(value)


__all__ = [
    "InvalidMessage",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "Message",
    "converter",
    "parse_message",
    "structure_params",
    "unstructure",
]
