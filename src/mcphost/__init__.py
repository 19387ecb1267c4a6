"""
mcphost - a host-side tool-calling runtime for text-completion models.

A model that can only complete text is given a catalog of tools and a
convention for asking for one: a line of JSON naming the tool and its
input. The host:

1. Registers tools and decides which are visible (ToolRegistry)
2. Detects tool requests in raw model output and runs them (ProtocolEngine)
3. Feeds results back and generates the final answer
4. Keeps conversation history and compacts it when it grows (ContextManager)
5. Confines file tools to allowed directories (PathSandbox)
6. Audits every tool call (OperationLogger)
"""

__version__ = "0.1.0"

from mcphost.config import HostConfig
from mcphost.context import ContextManager
from mcphost.engine import ProtocolEngine, TurnResult
from mcphost.filesystem_tools import FilesystemTools
from mcphost.llm import LLMError, OllamaClient, TextGenerator
from mcphost.oplog import OperationLogger
from mcphost.runtime import Runtime
from mcphost.sandbox import PathSandbox, SandboxViolation
from mcphost.schema import ParameterError, ParameterSpec, ToolDefinition
from mcphost.session import Session, SessionBusyError, SessionClosedError
from mcphost.tools import RegistryEvent, ToolRegistry
from mcphost.types import (
    ContextMessage,
    EngineState,
    MCPResponse,
    OperationLogEntry,
    Role,
    TextResponse,
    ToolFailure,
    ToolResult,
    ToolSuccess,
    ToolUseEnvelope,
    ToolUseResponse,
)

__all__ = [
    "ContextManager",
    "ContextMessage",
    "EngineState",
    "FilesystemTools",
    "HostConfig",
    "LLMError",
    "MCPResponse",
    "OllamaClient",
    "OperationLogEntry",
    "OperationLogger",
    "ParameterError",
    "ParameterSpec",
    "PathSandbox",
    "ProtocolEngine",
    "RegistryEvent",
    "Role",
    "Runtime",
    "SandboxViolation",
    "Session",
    "SessionBusyError",
    "SessionClosedError",
    "TextGenerator",
    "TextResponse",
    "ToolDefinition",
    "ToolFailure",
    "ToolRegistry",
    "ToolResult",
    "ToolSuccess",
    "ToolUseEnvelope",
    "ToolUseResponse",
    "TurnResult",
]
