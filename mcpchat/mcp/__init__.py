"""
MCP layer for MCPChat.

Two wire transports carry JSON-RPC between the client and remote MCP
servers over one-way HTTP primitives:

Dual-channel:     GET <url> (SSE)  <-- endpoint event, all replies
                  POST <endpoint>  --> requests (fire-and-forget)
Streamable HTTP:  GET <url> (SSE)  <-- server notifications
                  POST <url>       --> requests, replies in the response

The registry owns one client + transport pair per configured server.
"""

from mcpchat.mcp.client import MCPClient, MCPError, MCPRequestError, MCPRequestTimeout
from mcpchat.mcp.dual_channel import DualChannelTransport
from mcpchat.mcp.registry import (
    ConnectionFailed,
    ConnectionInProgress,
    ConnectionRegistry,
    NoServersConfigured,
    RegistryError,
    ServerNotConnected,
    ToolCallFailed,
    ToolNotFound,
    create_transport,
)
from mcpchat.mcp.schema import (
    ConnectResult,
    ServerStatus,
    ToolCallRequest,
    ToolDef,
    ToolsResponse,
    ToolWithServer,
)
from mcpchat.mcp.streamable_http import StreamableHTTPTransport
from mcpchat.mcp.transport import (
    ConnectionLost,
    HandshakeFailed,
    HandshakeTimeout,
    NotStarted,
    SendFailed,
    Transport,
    TransportClosed,
    TransportError,
)

__all__ = [
    "ConnectResult",
    "ConnectionLost",
    "ConnectionFailed",
    "ConnectionInProgress",
    "ConnectionRegistry",
    "DualChannelTransport",
    "HandshakeFailed",
    "HandshakeTimeout",
    "MCPClient",
    "MCPError",
    "MCPRequestError",
    "MCPRequestTimeout",
    "NoServersConfigured",
    "NotStarted",
    "RegistryError",
    "SendFailed",
    "ServerNotConnected",
    "ServerStatus",
    "StreamableHTTPTransport",
    "ToolCallFailed",
    "ToolCallRequest",
    "ToolDef",
    "ToolNotFound",
    "ToolWithServer",
    "ToolsResponse",
    "Transport",
    "TransportClosed",
    "TransportError",
    "create_transport",
]
