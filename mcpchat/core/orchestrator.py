"""
Conversation orchestrator - the tool-use loop.

One user turn runs as:

1. Send the transcript (prefixed with the enabled-tools fragment) to the model
2. Parse the reply for tool call blocks
3. No blocks: the reply is the answer, done
4. Otherwise execute each call in order, append TOOL_RESULT / TOOL_ERROR
   messages, and go back to 1

The loop stops after ``max_iterations`` model calls even if the model keeps
asking for tools; the last reply is returned as the answer.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from mcpchat.core.compression import messages_for_api
from mcpchat.core.conversation import Conversation, Message
from mcpchat.core.prompts import build_tools_prompt, format_tool_error, format_tool_result
from mcpchat.core.tool_calls import ToolCallParser, ToolValidationError, validate_arguments
from mcpchat.mcp.registry import ConnectionRegistry
from mcpchat.mcp.schema import ToolCallRequest, ToolDef
from mcpchat.providers.base import Provider

logger = logging.getLogger(__name__)

MAX_TOOL_ITERATIONS = 10


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class TurnResult:
    """Outcome of one user turn."""

    final: Message
    transcript: List[Message]
    new_messages: List[Message] = field(default_factory=list)
    iterations: int = 0
    tool_calls: int = 0
    hit_iteration_limit: bool = False
    token_usage: int = 0


# ---------------------------------------------------------------------------
# ConversationOrchestrator
# ---------------------------------------------------------------------------

class ConversationOrchestrator:
    """
    Drives model calls and tool execution for a conversation.

    Only tools passed to ``select_tools`` are described to the model and
    may be executed; anything else the model asks for is answered with a
    TOOL_ERROR naming the enabled tools.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ConnectionRegistry,
        selected_tools: Sequence[ToolDef] = (),
        max_iterations: int = MAX_TOOL_ITERATIONS,
        temperature: float = 0.87,
        system_prompt: Optional[str] = None,
        parser: Optional[ToolCallParser] = None,
    ):
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.provider = provider
        self.registry = registry
        self.max_iterations = max_iterations
        self.temperature = temperature
        self.system_prompt = system_prompt
        self.parser = parser or ToolCallParser()
        self._tools: Dict[str, ToolDef] = {}
        self.select_tools(selected_tools)

    # ------------------------------------------------------------------
    # Tool selection
    # ------------------------------------------------------------------

    def select_tools(self, tools: Sequence[ToolDef]) -> None:
        """Replace the set of tools the model is allowed to use."""
        self._tools = {tool.name: tool for tool in tools}
        logger.debug("Enabled tools: %s", ", ".join(self._tools) or "(none)")

    @property
    def selected_tools(self) -> List[ToolDef]:
        return list(self._tools.values())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, conversation: Conversation, text: str) -> TurnResult:
        """
        Append a user message and run a turn on the conversation.

        On success the turn's new messages are appended to the
        conversation. If the model call fails, the user message is removed
        again and the error propagates.
        """
        mark = len(conversation)
        conversation.append(Message.user(text))
        try:
            result = await self.run_turn(messages_for_api(conversation.messages))
        except Exception:
            conversation.rollback_to(mark)
            raise
        conversation.extend(result.new_messages)
        return result

    async def run_turn(self, messages: Sequence[Message]) -> TurnResult:
        """
        Run the tool-use loop starting from ``messages``.

        Provider failures propagate; tool lookup, validation and execution
        failures are reported to the model as TOOL_ERROR messages.
        """
        working: List[Message] = list(messages)
        new_messages: List[Message] = []
        tool_calls = 0
        total_tokens = 0

        for iteration in range(1, self.max_iterations + 1):
            reply = await self._call_model(working)
            total_tokens += reply.total_tokens or 0
            working.append(reply)
            new_messages.append(reply)

            requests = self.parser.parse(reply.content)
            if not requests:
                logger.debug("Turn finished after %d iteration(s)", iteration)
                return self._result(reply, working, new_messages, iteration, tool_calls, total_tokens)

            if iteration == self.max_iterations:
                logger.warning(
                    "Reached %d tool iterations; returning last response with %d unresolved tool call(s)",
                    self.max_iterations,
                    len(requests),
                )
                return self._result(
                    reply, working, new_messages, iteration, tool_calls, total_tokens, hit_limit=True
                )

            for request in requests:
                outcome = await self._execute(request)
                tool_calls += 1
                working.append(outcome)
                new_messages.append(outcome)

        # unreachable: the loop always returns on its last iteration
        raise RuntimeError("tool loop exited without a result")

    # ------------------------------------------------------------------
    # Single iteration
    # ------------------------------------------------------------------

    async def _call_model(self, working: Sequence[Message]) -> Message:
        outbound: List[Message] = []
        tools_prompt = build_tools_prompt(self.selected_tools)
        if tools_prompt:
            outbound.append(Message.system(tools_prompt))
        outbound.extend(working)

        started = time.monotonic()
        response = await self.provider.send_message(
            outbound,
            system_prompt=self.system_prompt,
            temperature=self.temperature,
        )
        duration_ms = (time.monotonic() - started) * 1000
        return Message.assistant(
            response.content,
            total_tokens=response.token_usage or None,
            duration_ms=duration_ms,
        )

    async def _execute(self, request: ToolCallRequest) -> Message:
        tool = self._tools.get(request.name)
        if tool is None:
            available = ", ".join(self._tools) or "(none)"
            logger.warning('Model requested unavailable tool "%s"', request.name)
            return Message.assistant(format_tool_error(
                request.name,
                f'Tool "{request.name}" is not available. Available tools: {available}',
            ))

        try:
            validate_arguments(tool, request.arguments)
        except ToolValidationError as e:
            logger.info('Rejected call to "%s": %s', request.name, e)
            return Message.assistant(format_tool_error(request.name, str(e)))

        server_name = getattr(tool, "server_name", None)
        try:
            result = await self.registry.call_tool(request.name, request.arguments, server_name=server_name)
        except Exception as e:
            logger.warning('Tool "%s" failed: %s', request.name, e)
            return Message.assistant(format_tool_error(request.name, str(e)))

        return Message.assistant(format_tool_result(request.name, request.arguments, result))

    @staticmethod
    def _result(
        final: Message,
        working: List[Message],
        new_messages: List[Message],
        iterations: int,
        tool_calls: int,
        total_tokens: int,
        hit_limit: bool = False,
    ) -> TurnResult:
        return TurnResult(
            final=final,
            transcript=working,
            new_messages=new_messages,
            iterations=iterations,
            tool_calls=tool_calls,
            hit_iteration_limit=hit_limit,
            token_usage=total_tokens,
        )
