"""
Prompt fragments for the tool-use loop.

The model is told which tools are enabled and how to request them. Tool
outcomes are fed back as plain-text ``TOOL_RESULT`` / ``TOOL_ERROR``
messages so the model can read them like any other turn.
"""

import json
from typing import Any, Dict, Optional, Sequence

from mcpchat.mcp.schema import ToolDef, ToolWithServer

TOOL_CALL_START = "TOOL_CALL"
TOOL_CALL_END = "END_TOOL_CALL"

_EXAMPLE_VALUES = {
    "string": "example",
    "number": 1,
    "integer": 1,
    "boolean": True,
    "array": [],
    "object": {},
}


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, default=str)


def format_tool_call(name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
    """Render a tool call in the block format the parser understands."""
    payload = json.dumps({"tool": name, "arguments": arguments or {}}, ensure_ascii=False)
    return f"{TOOL_CALL_START}\n{payload}\n{TOOL_CALL_END}"


def _example_arguments(tool: ToolDef) -> Dict[str, Any]:
    schema = tool.input_schema
    names = schema.required or list(schema.properties)[:1]
    arguments: Dict[str, Any] = {}
    for name in names:
        prop = schema.properties.get(name)
        ptype = prop.type if prop is not None else None
        if isinstance(ptype, list):
            ptype = ptype[0] if ptype else None
        arguments[name] = _EXAMPLE_VALUES.get(ptype or "string", "example")
    return arguments


def build_tools_prompt(tools: Sequence[ToolDef]) -> str:
    """
    Build the system-message fragment describing the enabled tools.

    Returns an empty string when no tools are enabled, in which case the
    caller sends no fragment at all.
    """
    if not tools:
        return ""

    parts = [
        "You have access to the following tools. Use them when they help "
        "answer the user's request.",
        "",
        "## Available Tools",
    ]
    for tool in tools:
        text = tool.full_schema_text()
        if isinstance(tool, ToolWithServer):
            text = text.replace(f"Tool: {tool.name}", f"Tool: {tool.name} (server: {tool.server_name})", 1)
        parts.append(text)
        parts.append("")

    example = tools[0]
    parts.extend([
        "## Calling a Tool",
        "To call a tool, reply with a block in exactly this format:",
        "",
        TOOL_CALL_START,
        '{"tool": "<tool name>", "arguments": {"<parameter>": <value>}}',
        TOOL_CALL_END,
        "",
        "Example:",
        format_tool_call(example.name, _example_arguments(example)),
        "",
        "You may emit several blocks in one reply; they run in order. "
        "Results come back as TOOL_RESULT messages and failures as "
        "TOOL_ERROR messages. When you have what you need, answer the user "
        "directly without any tool call block.",
    ])
    return "\n".join(parts)


def format_tool_result(name: str, arguments: Dict[str, Any], result: Any) -> str:
    return (
        f"TOOL_RESULT [{name}]\n"
        f"Arguments:\n{_dump(arguments)}\n"
        f"Result:\n{_dump(result)}"
    )


def format_tool_error(name: str, message: str) -> str:
    return f"TOOL_ERROR [{name}]\n{message}"
