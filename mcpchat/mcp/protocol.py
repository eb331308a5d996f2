"""
JSON-RPC 2.0 helpers for MCP communication.

Messages travel as plain dicts; these helpers build and classify them.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2025-06-18"


class ErrorCodes:
    """Standard JSON-RPC 2.0 error codes."""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


@dataclass
class JSONRPCError:
    """JSON-RPC 2.0 error object."""
    code: int
    message: str
    data: Optional[Any] = None

    @classmethod
    def from_dict(cls, d: Any) -> "JSONRPCError":
        if not isinstance(d, dict):
            return cls(code=ErrorCodes.INTERNAL_ERROR, message=str(d))
        return cls(
            code=d.get("code", ErrorCodes.INTERNAL_ERROR),
            message=d.get("message", "Unknown error"),
            data=d.get("data"),
        )


def make_request(request_id: int, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a JSON-RPC request."""
    request: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        request["params"] = params
    return request


def make_notification(method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a JSON-RPC notification (no id, no response expected)."""
    notification: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        notification["params"] = params
    return notification


def is_response(message: Dict[str, Any]) -> bool:
    return "method" not in message and "id" in message and ("result" in message or "error" in message)
