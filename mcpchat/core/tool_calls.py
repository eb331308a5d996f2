"""
Tool-call extraction and argument validation.

Models request tools by embedding blocks like this in their reply::

    TOOL_CALL
    {"tool": "search", "arguments": {"query": "..."}}
    END_TOOL_CALL

Framing is matched loosely (case, spaces, underscores, trailing colon,
code fences) because models rarely reproduce the marker verbatim. The
decoded payload is checked strictly.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from mcpchat.mcp.schema import SchemaProperty, ToolCallRequest, ToolDef

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_TOOL_CALL_BLOCK = re.compile(
    r"(?<!END)(?<!END_)(?<!END )"
    r"TOOL[\s_]?CALL:?\s*"
    r"(?:```[a-zA-Z]*\s*)?"
    r"(\{.*?\})"
    r"\s*(?:```\s*)?"
    r"END[\s_]?TOOL[\s_]?CALL",
    re.IGNORECASE | re.DOTALL,
)


class ToolCallParser:
    """Extracts ``ToolCallRequest`` objects from free-form model output."""

    def parse(self, text: str) -> List[ToolCallRequest]:
        """Return tool calls in the order their blocks appear in ``text``."""
        requests: List[ToolCallRequest] = []
        for index, match in enumerate(_TOOL_CALL_BLOCK.finditer(text or "")):
            body = match.group(1)
            try:
                payload = json.loads(body)
            except ValueError as exc:
                logger.warning("Skipping tool call block %d: invalid JSON (%s)", index + 1, exc)
                continue

            request = self._to_request(payload)
            if request is None:
                logger.warning("Skipping tool call block %d: invalid structure %r", index + 1, body[:120])
                continue
            requests.append(request)
        return requests

    @staticmethod
    def _to_request(payload: Any) -> Optional[ToolCallRequest]:
        if not isinstance(payload, dict) or not isinstance(payload.get("tool"), str):
            return None
        if "arguments" not in payload:
            return ToolCallRequest(name=payload["tool"], arguments={})
        arguments = payload["arguments"]
        if not isinstance(arguments, dict):
            return None
        return ToolCallRequest(name=payload["tool"], arguments=arguments)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ToolValidationError(Exception):
    """Arguments do not satisfy the tool's input schema."""


class MissingRequiredParameter(ToolValidationError):
    def __init__(self, name: str):
        super().__init__(f"Missing required parameter: {name}")
        self.parameter = name


class TypeMismatch(ToolValidationError):
    def __init__(self, name: str, expected: str, actual: str):
        super().__init__(f'Parameter "{name}" must be of type {expected}, got {actual}')
        self.parameter = name
        self.expected = expected
        self.actual = actual


def json_type_name(value: Any) -> str:
    """JSON type name of a decoded value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _matches(value: Any, expected: str) -> bool:
    if expected == "string":
        return isinstance(value, str)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "integer":
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
    # array/object/null and custom types are not enforced
    return True


def _check_type(name: str, value: Any, prop: SchemaProperty) -> None:
    if prop.type is None:
        return
    expected: Sequence[str] = [prop.type] if isinstance(prop.type, str) else prop.type
    if not expected or any(_matches(value, t) for t in expected):
        return
    raise TypeMismatch(name, " | ".join(expected), json_type_name(value))


def validate_arguments(tool: ToolDef, arguments: Dict[str, Any]) -> List[str]:
    """
    Check ``arguments`` against the tool's input schema.

    Every required parameter must be present and non-null; every declared
    parameter that is present must match its primitive type. Undeclared
    arguments are tolerated and returned so callers can report them.

    Raises:
        MissingRequiredParameter: a required parameter is absent or null.
        TypeMismatch: a declared parameter has the wrong primitive type.
    """
    schema = tool.input_schema
    for name in schema.required:
        if arguments.get(name) is None:
            raise MissingRequiredParameter(name)

    undeclared: List[str] = []
    for name, value in arguments.items():
        prop = schema.properties.get(name)
        if prop is None:
            undeclared.append(name)
            continue
        if value is None:
            continue
        _check_type(name, value, prop)

    if undeclared:
        logger.warning(
            'Tool "%s" called with undeclared arguments: %s', tool.name, ", ".join(undeclared)
        )
    return undeclared
