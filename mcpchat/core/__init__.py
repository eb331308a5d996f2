"""MCPChat core - tool-call parsing, prompts, compression and the conversation loop."""

from mcpchat.core.conversation import Conversation, Message
from mcpchat.core.orchestrator import ConversationOrchestrator, TurnResult
from mcpchat.core.tool_calls import ToolCallParser, validate_arguments

__all__ = [
    "Conversation",
    "ConversationOrchestrator",
    "Message",
    "ToolCallParser",
    "TurnResult",
    "validate_arguments",
]
