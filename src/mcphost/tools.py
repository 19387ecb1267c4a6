"""
Tool Registry - the catalog of operations a model may invoke.

A model can only affect the host through a tool registered here. The
registry owns the definitions and their handlers, decides which ones are
visible for dispatch, and converts every dispatch failure into a
ToolFailure value so a misbehaving tool never takes a session down.

Reads never take the lock: mutations build a new table and swap it in,
so a lookup running concurrently with a registration sees either the old
table or the new one, never a half-updated one.
"""

import inspect
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from mcphost.schema import ParameterError, ParameterSpec, ToolDefinition, decode_parameters
from mcphost.types import ToolCall, ToolFailure, ToolResult, ToolSuccess

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any] | Any]

REGISTERED = "registered"
ENABLED = "enabled"
DISABLED = "disabled"


@dataclass(frozen=True)
class RegistryEvent:
    """Change notification emitted on every registry mutation."""
    kind: str
    name: str


@dataclass(frozen=True)
class _Entry:
    definition: ToolDefinition
    handler: ToolHandler


class ToolRegistry:
    """
    Registry of available tools.

    Registering a name that already exists replaces the old entry
    (last-write-wins). Disabled tools stay in the registry and are
    returned by all_definitions(), but lookup() and list_enabled() treat
    them exactly like tools that were never registered.
    """

    def __init__(self, disabled: Iterable[str] = ()) -> None:
        """
        Args:
            disabled: Tool names that start out disabled whenever they are
                registered (e.g. from configuration)
        """
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._subscribers: list[Callable[[RegistryEvent], None]] = []
        self._start_disabled = set(disabled)

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> ToolDefinition:
        """Register a tool, replacing any existing tool with the same name."""
        if definition.name in self._start_disabled and definition.enabled:
            definition = replace(definition, enabled=False)

        with self._lock:
            if definition.name in self._entries:
                logger.warning(f"Overwriting existing tool: {definition.name}")
            table = dict(self._entries)
            table[definition.name] = _Entry(definition, handler)
            self._entries = table

        logger.debug(f"Registered tool: {definition.name}")
        self._emit(RegistryEvent(REGISTERED, definition.name))
        return definition

    def register_function(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: Iterable[ParameterSpec] = (),
        tags: Iterable[str] = (),
    ) -> ToolDefinition:
        """Convenience method to register a function as a tool."""
        definition = ToolDefinition(
            name=name,
            description=description,
            parameters=tuple(parameters),
            tags=frozenset(tags),
        )
        return self.register(definition, handler)

    def enable(self, name: str) -> bool:
        """Make a tool visible for dispatch. Returns False for unknown names."""
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        """Hide a tool from dispatch without removing it. Returns False for unknown names."""
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return False
            if entry.definition.enabled != enabled:
                table = dict(self._entries)
                table[name] = replace(entry, definition=replace(entry.definition, enabled=enabled))
                self._entries = table

        logger.debug(f"Tool {name} {'enabled' if enabled else 'disabled'}")
        self._emit(RegistryEvent(ENABLED if enabled else DISABLED, name))
        return True

    def lookup(self, name: str) -> ToolHandler | None:
        """Handler for an enabled tool, or None if missing or disabled."""
        entry = self._entries.get(name)
        if entry is None or not entry.definition.enabled:
            return None
        return entry.handler

    def get_definition(self, name: str) -> ToolDefinition | None:
        """Definition of a tool, including disabled ones."""
        entry = self._entries.get(name)
        return entry.definition if entry else None

    def exists(self, name: str) -> bool:
        return name in self._entries

    def is_enabled(self, name: str) -> bool:
        entry = self._entries.get(name)
        return entry is not None and entry.definition.enabled

    def list_enabled(self, tag: str | None = None) -> list[ToolDefinition]:
        """Enabled definitions in registration order, optionally filtered by tag."""
        return [
            entry.definition
            for entry in self._entries.values()
            if entry.definition.enabled and (tag is None or tag in entry.definition.tags)
        ]

    def all_definitions(self) -> list[ToolDefinition]:
        """Every definition, enabled or not, in registration order."""
        return [entry.definition for entry in self._entries.values()]

    def function_definitions(self) -> list[dict[str, Any]]:
        """Flattened function-calling view of the enabled tools."""
        return [d.function_definition() for d in self.list_enabled()]

    def subscribe(self, callback: Callable[[RegistryEvent], None]) -> Callable[[], None]:
        """
        Receive a RegistryEvent for every mutation.

        Returns a function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: RegistryEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Registry subscriber failed on {event.kind} {event.name}: {e}")

    async def execute(self, tool_call: ToolCall) -> ToolResult:
        """
        Execute a tool call.

        Unknown and disabled tools, invalid arguments and handler
        exceptions all come back as ToolFailure. Only cancellation
        propagates.
        """
        entry = self._entries.get(tool_call.name)
        if entry is None or not entry.definition.enabled:
            return ToolFailure(
                f"Unknown tool: {tool_call.name}",
                {"tool": tool_call.name},
            )

        try:
            arguments = decode_parameters(entry.definition, tool_call.arguments)
        except ParameterError as e:
            return ToolFailure(str(e), {"tool": tool_call.name})

        logger.info(f"Executing tool: {tool_call.name}")
        try:
            value = entry.handler(arguments)
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            logger.error(f"Tool {tool_call.name} failed: {e}")
            return ToolFailure(str(e) or type(e).__name__, {"tool": tool_call.name})

        if isinstance(value, (ToolSuccess, ToolFailure)):
            return value
        return ToolSuccess(value)

    @property
    def tool_names(self) -> list[str]:
        """List of registered tool names."""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries
