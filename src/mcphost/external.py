"""
External tool sources - tools advertised by MCP servers.

Servers are configured the same way as other MCP clients:

    {
      "servers": {
        "github": {
          "command": "npx",
          "args": ["-y", "@modelcontextprotocol/server-github"],
          "env": {"GITHUB_PERSONAL_ACCESS_TOKEN": "..."}
        }
      }
    }

read from the file named by MCP_CONFIG_PATH or the MCP_SERVERS variable.
Discovery lists each server's tools and registers them; the handlers
spawn the server on demand through the official MCP Python SDK.
"""

import json
import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from mcphost.schema import ToolDefinition
from mcphost.tools import ToolRegistry
from mcphost.types import ToolFailure

logger = logging.getLogger(__name__)

EXTERNAL_TAG = "external"


@dataclass
class ServerConfig:
    """How to launch one MCP server over stdio."""
    name: str
    command: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ServerConfig":
        return cls(
            name=name,
            command=data.get("command", "npx"),
            args=[str(a) for a in data.get("args", [])],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        )


def load_server_configs() -> list[ServerConfig]:
    """Servers from MCP_CONFIG_PATH or MCP_SERVERS; an empty list if neither is usable."""
    config_path = os.environ.get("MCP_CONFIG_PATH")
    servers_json = os.environ.get("MCP_SERVERS")

    data: Any = None
    if config_path:
        try:
            with open(config_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load MCP config from {config_path}: {e}")
            return []
    elif servers_json:
        try:
            data = json.loads(servers_json)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse MCP_SERVERS JSON: {e}")
            return []

    if not isinstance(data, dict):
        return []
    servers = data.get("servers") or {}
    return [
        ServerConfig.from_dict(name, cfg)
        for name, cfg in servers.items()
        if isinstance(cfg, dict)
    ]


@asynccontextmanager
async def stdio_connect(server: ServerConfig) -> AsyncIterator[Any]:
    """Spawn a server and yield an initialized MCP ClientSession."""
    from mcp import ClientSession, StdioServerParameters
    from mcp.client.stdio import stdio_client

    params = StdioServerParameters(
        command=server.command,
        args=server.args,
        env={**os.environ, **server.env},
    )
    async with AsyncExitStack() as stack:
        read, write = await stack.enter_async_context(stdio_client(params))
        session = await stack.enter_async_context(ClientSession(read, write))
        await session.initialize()
        yield session


def format_content(content: list[Any]) -> str:
    """Flatten MCP content parts into text."""
    parts = []
    for item in content:
        if hasattr(item, "text"):
            parts.append(item.text)
        elif hasattr(item, "data"):
            parts.append(f"[Binary data: {len(item.data)} bytes]")
        else:
            parts.append(str(item))
    return "\n".join(parts)


class ExternalToolSource:
    """Discovers tools on MCP servers and registers proxies for them."""

    def __init__(
        self,
        servers: list[ServerConfig],
        connect: Callable[[ServerConfig], AbstractAsyncContextManager[Any]] = stdio_connect,
    ) -> None:
        self.servers = servers
        self._connect = connect

    @classmethod
    def from_env(cls) -> "ExternalToolSource":
        return cls(load_server_configs())

    async def discover(self, registry: ToolRegistry) -> list[ToolDefinition]:
        """
        Register every tool each server advertises.

        A server that cannot be reached is logged and skipped.
        """
        registered: list[ToolDefinition] = []
        for server in self.servers:
            try:
                async with self._connect(server) as session:
                    listing = await session.list_tools()
            except Exception as e:
                logger.warning(f"Skipping MCP server '{server.name}': {e}")
                continue

            for tool in listing.tools:
                definition = ToolDefinition.from_json_schema(
                    name=tool.name,
                    description=tool.description or "",
                    schema=getattr(tool, "inputSchema", None),
                    tags={EXTERNAL_TAG, server.name},
                    metadata={"server_name": server.name},
                )
                registered.append(registry.register(definition, self._handler(server, tool.name)))
            logger.info(f"Discovered {len(listing.tools)} tool(s) on MCP server '{server.name}'")
        return registered

    def _handler(self, server: ServerConfig, tool_name: str) -> Callable[[dict[str, Any]], Any]:
        async def call(args: dict[str, Any]) -> str | ToolFailure:
            async with self._connect(server) as session:
                result = await session.call_tool(tool_name, args)
            text = format_content(result.content)
            if getattr(result, "isError", False):
                return ToolFailure(
                    text or f"Tool '{tool_name}' failed on '{server.name}'",
                    {"tool": tool_name, "server": server.name},
                )
            return text or "Tool executed successfully (no output)"

        return call
