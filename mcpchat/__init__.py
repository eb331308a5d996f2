"""
MCPChat - Multi-backend LLM chat with MCP tool calling.

Conversations run against pluggable LLM providers and can be extended
with tools discovered at runtime from one or more MCP servers.

Architecture:
- Transports speak JSON-RPC to MCP servers over SSE + HTTP POST
  (dual-channel) or the single-endpoint Streamable HTTP protocol
- A connection registry owns every server connection and routes tool
  calls to the server that advertises the tool
- The orchestrator parses TOOL_CALL blocks out of model output,
  validates them, executes them and feeds results back to the model
"""

__version__ = "1.0.0"
__author__ = "MCPChat Team"
__license__ = "Apache-2.0"

from mcpchat.core.orchestrator import ConversationOrchestrator, TurnResult
from mcpchat.core.tool_calls import ToolCallParser
from mcpchat.mcp.registry import ConnectionRegistry

__all__ = [
    "ConnectionRegistry",
    "ConversationOrchestrator",
    "ToolCallParser",
    "TurnResult",
    "__version__",
]
