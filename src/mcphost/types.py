"""
Core types for the tool-calling host.

These types are the data that flows between the registry, the context
manager and the protocol engine. Tool results are a tagged union
(ToolSuccess | ToolFailure) so callers match on the variant instead of
probing a loosely shaped dictionary.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message roles in the conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class EngineState(str, Enum):
    """States a single generation turn moves through."""
    IDLE = "idle"
    GENERATING = "generating"
    TOOL_DETECTED = "tool_detected"
    EXECUTING = "executing"
    RESULT_INTEGRATED = "result_integrated"
    TEXT_FINAL = "text_final"


class ToolMessageStateError(RuntimeError):
    """Raised when a tool message is resolved twice or is not a tool message."""


@dataclass(frozen=True)
class ToolSuccess:
    """A tool handler completed and produced a value."""
    value: Any

    @property
    def success(self) -> bool:
        return True

    def payload(self) -> Any:
        """JSON-compatible form used in prompts and logs."""
        return self.value


@dataclass(frozen=True)
class ToolFailure:
    """
    A tool call failed.

    Unknown tools, parameter errors, sandbox rejections and handler
    exceptions all end up here so the model can read the error and adapt.
    """
    error: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return False

    def payload(self) -> dict[str, Any]:
        return {"error": self.error, **self.details}


ToolResult = ToolSuccess | ToolFailure


MAX_PRINTABLE_INT_BITS = 12_000


def _printable(value: Any) -> Any:
    """Copy of value with integers too large to print replaced by a description."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value.bit_length() > MAX_PRINTABLE_INT_BITS:
            return f"<integer of {value.bit_length()} bits>"
        return value
    if isinstance(value, dict):
        return {str(k): _printable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_printable(v) for v in value]
    return value


def dump_json(value: Any, indent: int | None = None) -> str:
    """
    Serialize a value for prompts, falling back to str() for odd types.

    Never raises: values json cannot render (huge integers, circular
    containers) are described instead.
    """
    try:
        return json.dumps(value, indent=indent, default=str, ensure_ascii=False)
    except (ValueError, TypeError, RecursionError):
        pass
    try:
        return json.dumps(_printable(value), indent=indent, default=str, ensure_ascii=False)
    except (ValueError, TypeError, RecursionError):
        return json.dumps(f"<unserializable {type(value).__name__}>")


@dataclass
class ToolCall:
    """A request to run one tool with a parameter mapping."""
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


@dataclass
class ContextMessage:
    """
    A single entry in the conversation history.

    Tool-role messages carry tool_name/tool_input and start out pending
    (tool_result is None). resolve() moves them to resolved exactly once.
    """
    role: Role
    content: str = ""
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_result: ToolResult | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_tool(self) -> bool:
        return self.role == Role.TOOL

    @property
    def is_pending(self) -> bool:
        return self.is_tool and self.tool_result is None

    def resolve(self, result: ToolResult) -> None:
        """Attach the tool result. A message can only be resolved once."""
        if not self.is_tool:
            raise ToolMessageStateError(f"Cannot resolve a {self.role.value} message")
        if self.tool_result is not None:
            raise ToolMessageStateError(f"Tool message for '{self.tool_name}' is already resolved")
        self.tool_result = result

    def render(self) -> str:
        """Render the message the way it appears in a contextual prompt."""
        if not self.is_tool:
            return f"{self.role.value}: {self.content}"

        lines = [
            f"Tool: {self.tool_name}",
            f"Input: {dump_json(self.tool_input or {})}",
        ]
        if self.tool_result is None:
            lines.append("Result: (pending)")
        elif isinstance(self.tool_result, ToolFailure):
            lines.append(f"Result: Error: {self.tool_result.error}")
        else:
            lines.append(f"Result: {dump_json(self.tool_result.payload())}")
        return "\n".join(lines)

    def char_count(self) -> int:
        """Characters counted toward the history size estimate."""
        if not self.is_tool:
            return len(self.content)
        return len(self.render())


@dataclass
class ConversationState:
    """
    Per-session conversation history.

    Insertion order is significant. Once summarization fires, summary
    replaces the messages that were compacted.
    """
    messages: list[ContextMessage] = field(default_factory=list)
    summary: str | None = None
    enabled: bool = True
    default_model: str = ""


@dataclass(frozen=True)
class ToolUseEnvelope:
    """A tool request parsed out of model output, with the original line."""
    tool: str
    input: dict[str, Any]
    raw_line: str = ""


@dataclass(frozen=True)
class TextResponse:
    """Final or intermediate plain-text output of a generation step."""
    text: str


@dataclass(frozen=True)
class ToolUseResponse:
    """A generation step that asked for a tool."""
    tool: str
    input: dict[str, Any]
    raw_line: str = ""

    @property
    def envelope(self) -> ToolUseEnvelope:
        return ToolUseEnvelope(tool=self.tool, input=self.input, raw_line=self.raw_line)


MCPResponse = TextResponse | ToolUseResponse


@dataclass(frozen=True)
class OperationLogEntry:
    """One audited tool invocation. Entries never change after creation."""
    tool_name: str
    input: Any
    result: Any = None
    success: bool = True
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "toolName": self.tool_name,
            "input": self.input,
            "result": self.result,
            "success": self.success,
            "errorMessage": self.error_message,
        }

    def __str__(self) -> str:
        status = "Success" if self.success else "Error"
        text = f"{self.timestamp:%Y-%m-%d %H:%M:%S} - {self.tool_name} - {status}"
        if self.error_message:
            text += f" - {self.error_message}"
        return text
