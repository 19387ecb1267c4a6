"""
Runtime - wires the long-lived components together at startup.

Everything is constructed once and passed by reference: the registry,
sandbox, operation log, generator and engine. There is no global lookup;
callers hold the Runtime (or the pieces they need).
"""

import logging
from dataclasses import dataclass

from mcphost import utility_tools
from mcphost.config import HostConfig
from mcphost.engine import ProtocolEngine
from mcphost.external import ExternalToolSource
from mcphost.filesystem_tools import FilesystemTools
from mcphost.llm import OllamaClient, TextGenerator
from mcphost.oplog import OperationLogger
from mcphost.sandbox import PathSandbox
from mcphost.schema import ToolDefinition
from mcphost.tools import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """The wired-up host."""
    config: HostConfig
    registry: ToolRegistry
    sandbox: PathSandbox
    oplog: OperationLogger
    generator: TextGenerator
    engine: ProtocolEngine

    @classmethod
    def create(
        cls,
        config: HostConfig | None = None,
        generator: TextGenerator | None = None,
    ) -> "Runtime":
        """
        Build the host from configuration.

        Args:
            config: Host configuration (defaults to environment variables)
            generator: Text generator to use instead of an OllamaClient
        """
        config = config or HostConfig.from_env()

        registry = ToolRegistry(disabled=config.engine.disabled_tools)
        sandbox = PathSandbox.from_config(config.sandbox)
        FilesystemTools(sandbox).register(registry)
        utility_tools.register(registry)

        oplog = OperationLogger(config.oplog)
        generator = generator or OllamaClient(config.llm)
        engine = ProtocolEngine(
            registry=registry,
            generator=generator,
            oplog=oplog,
            config=config.engine,
            context_config=config.context,
            default_model=config.llm.model,
        )
        logger.info(f"Runtime ready with {len(registry)} tools")
        return cls(config, registry, sandbox, oplog, generator, engine)

    async def discover_external_tools(
        self,
        source: ExternalToolSource | None = None,
    ) -> list[ToolDefinition]:
        """Register tools from configured MCP servers."""
        source = source or ExternalToolSource.from_env()
        if not source.servers:
            return []
        return await source.discover(self.registry)

    async def aclose(self) -> None:
        """Flush pending log writes and close the generator's connection."""
        await self.oplog.flush()
        if isinstance(self.generator, OllamaClient):
            await self.generator.aclose()
