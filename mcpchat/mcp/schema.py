"""Data models for MCP tool definitions, discovery results and parsed tool calls."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SchemaProperty(BaseModel):
    """A single property of a tool's input or output schema."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: Optional[Union[str, List[str]]] = None
    description: Optional[str] = None


class ObjectSchema(BaseModel):
    """Object schema: named properties plus the set of required names."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = "object"
    properties: Dict[str, SchemaProperty] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


class ToolAnnotations(BaseModel):
    """Display title and behavioural hints advertised by the server."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: Optional[str] = None
    read_only_hint: Optional[bool] = Field(default=None, alias="readOnlyHint")
    destructive_hint: Optional[bool] = Field(default=None, alias="destructiveHint")
    idempotent_hint: Optional[bool] = Field(default=None, alias="idempotentHint")
    open_world_hint: Optional[bool] = Field(default=None, alias="openWorldHint")


class ToolDef(BaseModel):
    """Tool definition as returned by ``tools/list``. Immutable once fetched."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: Optional[str] = None
    input_schema: ObjectSchema = Field(default_factory=ObjectSchema, alias="inputSchema")
    output_schema: Optional[ObjectSchema] = Field(default=None, alias="outputSchema")
    annotations: Optional[ToolAnnotations] = None

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.required)

    def full_schema_text(self) -> str:
        """Parameter listing used when describing the tool to the model."""
        lines = [f"Tool: {self.name}"]
        if self.description:
            lines.append(f"  {self.description}")
        lines.append("  Parameters:")
        if not self.input_schema.properties:
            lines.append("    (none)")
        required = set(self.input_schema.required)
        for pname, prop in self.input_schema.properties.items():
            ptype = prop.type if isinstance(prop.type, str) else "/".join(prop.type or ["any"])
            req = " (required)" if pname in required else ""
            desc = f" - {prop.description}" if prop.description else ""
            lines.append(f"    - {pname}: {ptype}{req}{desc}")
        return "\n".join(lines)


class ToolWithServer(ToolDef):
    """A tool tagged with the server that advertises it."""

    server_name: str
    server_url: str


class ServerStatus(BaseModel):
    """Per-server outcome of a discovery pass."""

    connected: bool
    error: Optional[str] = None
    tool_count: int = 0


class ToolsResponse(BaseModel):
    """Merged tool list across servers plus per-server status."""

    tools: List[ToolWithServer] = Field(default_factory=list)
    server_statuses: Dict[str, ServerStatus] = Field(default_factory=dict)

    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.tools]


class FailedServer(BaseModel):
    name: str
    error: str


class ConnectResult(BaseModel):
    """Partition of enabled servers into connected and failed."""

    connected: List[str] = Field(default_factory=list)
    failed: List[FailedServer] = Field(default_factory=list)


class ToolCallRequest(BaseModel):
    """A tool invocation recovered from model output."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
