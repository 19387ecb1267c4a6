"""
Tests for ToolRegistry - the catalog of operations a model may invoke.

These tests verify registration, enable/disable visibility, change
notification and that dispatch never raises for tool-level failures.
"""

import asyncio

import pytest

from mcphost.schema import ParameterSpec, ToolDefinition
from mcphost.tools import DISABLED, ENABLED, REGISTERED, RegistryEvent, ToolRegistry
from mcphost.types import ToolCall, ToolFailure, ToolSuccess


def _definition(name: str, tags: tuple[str, ...] = (), *params: ParameterSpec) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"{name} tool", parameters=params, tags=frozenset(tags))


async def _echo(args: dict) -> dict:
    return args


class TestRegistration:
    """Test registering and looking up tools."""

    def test_register_and_lookup(self) -> None:
        """A registered tool should be found by lookup."""
        registry = ToolRegistry()
        registry.register(_definition("echo"), _echo)

        assert "echo" in registry
        assert registry.lookup("echo") is _echo
        assert registry.get_definition("echo").name == "echo"

    def test_register_twice_replaces(self) -> None:
        """Registering the same name again should replace, never duplicate."""
        registry = ToolRegistry()

        def first(args: dict) -> str:
            return "first"

        def second(args: dict) -> str:
            return "second"

        registry.register(_definition("tool"), first)
        registry.register(ToolDefinition(name="tool", description="replacement"), second)

        assert len(registry) == 1
        assert registry.lookup("tool") is second
        assert registry.get_definition("tool").description == "replacement"

    def test_register_function_convenience(self) -> None:
        """register_function should build the definition for you."""
        registry = ToolRegistry()
        definition = registry.register_function(
            name="greet",
            description="Greet someone",
            handler=lambda args: f"Hello, {args['name']}!",
            parameters=[ParameterSpec("name", required=True)],
            tags=["demo"],
        )

        assert definition.tags == frozenset({"demo"})
        assert registry.get_definition("greet") == definition

    def test_lookup_unknown_returns_none(self) -> None:
        registry = ToolRegistry()
        assert registry.lookup("missing") is None
        assert registry.get_definition("missing") is None

    def test_initially_disabled_names(self) -> None:
        """Names configured as disabled should register disabled."""
        registry = ToolRegistry(disabled=["write_file"])
        registry.register(_definition("write_file"), _echo)

        assert registry.exists("write_file")
        assert not registry.is_enabled("write_file")
        assert registry.lookup("write_file") is None


class TestEnableDisable:
    """Test visibility toggling."""

    def test_disable_hides_from_lookup(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("echo"), _echo)

        assert registry.disable("echo")
        assert registry.lookup("echo") is None

    def test_enable_restores_lookup(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("echo"), _echo)

        registry.disable("echo")
        registry.enable("echo")

        assert registry.lookup("echo") is _echo

    def test_toggles_are_idempotent(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("echo"), _echo)

        registry.disable("echo")
        registry.disable("echo")
        assert not registry.is_enabled("echo")

        registry.enable("echo")
        registry.enable("echo")
        assert registry.is_enabled("echo")

    def test_disabled_tool_still_in_all_definitions(self) -> None:
        """Admin views see disabled tools; dispatch listing does not."""
        registry = ToolRegistry()
        registry.register(_definition("a"), _echo)
        registry.register(_definition("b"), _echo)
        registry.disable("a")

        assert [d.name for d in registry.list_enabled()] == ["b"]
        all_defs = {d.name: d for d in registry.all_definitions()}
        assert set(all_defs) == {"a", "b"}
        assert all_defs["a"].enabled is False

    def test_toggle_unknown_tool_returns_false(self) -> None:
        registry = ToolRegistry()
        assert registry.enable("ghost") is False
        assert registry.disable("ghost") is False


class TestListing:
    """Test listing order and tag filters."""

    def test_registration_order(self) -> None:
        registry = ToolRegistry()
        for name in ["zeta", "alpha", "mid"]:
            registry.register(_definition(name), _echo)

        assert [d.name for d in registry.list_enabled()] == ["zeta", "alpha", "mid"]

    def test_tag_filter(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("read", ("filesystem",)), _echo)
        registry.register(_definition("clock", ("utility",)), _echo)
        registry.register(_definition("write", ("filesystem",)), _echo)

        assert [d.name for d in registry.list_enabled("filesystem")] == ["read", "write"]
        assert registry.list_enabled("nothing") == []

    def test_function_definitions_flattened(self) -> None:
        registry = ToolRegistry()
        registry.register(
            _definition("read", (), ParameterSpec("path", required=True)),
            _echo,
        )

        [function] = registry.function_definitions()
        assert function["name"] == "read"
        assert function["parameters"]["properties"]["path"]["type"] == "string"
        assert function["parameters"]["required"] == ["path"]


class TestChangeEvents:
    """Test subscription to registry mutations."""

    def test_every_mutation_emits(self) -> None:
        registry = ToolRegistry()
        events: list[RegistryEvent] = []
        registry.subscribe(events.append)

        registry.register(_definition("echo"), _echo)
        registry.disable("echo")
        registry.enable("echo")

        assert events == [
            RegistryEvent(REGISTERED, "echo"),
            RegistryEvent(DISABLED, "echo"),
            RegistryEvent(ENABLED, "echo"),
        ]

    def test_unsubscribe(self) -> None:
        registry = ToolRegistry()
        events: list[RegistryEvent] = []
        unsubscribe = registry.subscribe(events.append)

        unsubscribe()
        registry.register(_definition("echo"), _echo)

        assert events == []

    def test_failing_subscriber_does_not_break_registration(self) -> None:
        registry = ToolRegistry()

        def broken(event: RegistryEvent) -> None:
            raise RuntimeError("subscriber bug")

        registry.subscribe(broken)
        registry.register(_definition("echo"), _echo)

        assert "echo" in registry


class TestExecute:
    """Test dispatch through the registry."""

    @pytest.mark.asyncio
    async def test_execute_async_handler(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("echo", (), ParameterSpec("text", required=True)), _echo)

        result = await registry.execute(ToolCall("echo", {"text": "hi"}))

        assert result == ToolSuccess({"text": "hi"})

    @pytest.mark.asyncio
    async def test_execute_sync_handler(self) -> None:
        registry = ToolRegistry()
        registry.register_function("add", "Add", lambda args: args["a"] + args["b"], [
            ParameterSpec("a", "integer", required=True),
            ParameterSpec("b", "integer", required=True),
        ])

        result = await registry.execute(ToolCall("add", {"a": "2", "b": 3}))

        assert result == ToolSuccess(5)

    @pytest.mark.asyncio
    async def test_unknown_tool_is_structured_error(self) -> None:
        registry = ToolRegistry()

        result = await registry.execute(ToolCall("nope", {}))

        assert isinstance(result, ToolFailure)
        assert "nope" in result.error

    @pytest.mark.asyncio
    async def test_disabled_tool_looks_unknown(self) -> None:
        """Disabled and never-registered tools fail the same way."""
        registry = ToolRegistry()
        registry.register(_definition("echo"), _echo)
        registry.disable("echo")

        disabled = await registry.execute(ToolCall("echo", {}))
        missing = await registry.execute(ToolCall("other", {}))

        assert isinstance(disabled, ToolFailure)
        assert disabled.error == "Unknown tool: echo"
        assert missing.error == "Unknown tool: other"

    @pytest.mark.asyncio
    async def test_parameter_error_is_structured(self) -> None:
        registry = ToolRegistry()
        registry.register(_definition("echo", (), ParameterSpec("text", required=True)), _echo)

        result = await registry.execute(ToolCall("echo", {}))

        assert isinstance(result, ToolFailure)
        assert "text" in result.error

    @pytest.mark.asyncio
    async def test_handler_exception_is_captured(self) -> None:
        registry = ToolRegistry()

        async def failing(args: dict) -> str:
            raise ValueError("Something went wrong")

        registry.register(_definition("failing"), failing)

        result = await registry.execute(ToolCall("failing", {}))

        assert isinstance(result, ToolFailure)
        assert result.error == "Something went wrong"
        assert result.details["tool"] == "failing"

    @pytest.mark.asyncio
    async def test_handler_returning_failure_passes_through(self) -> None:
        registry = ToolRegistry()
        failure = ToolFailure("denied", {"path": "/etc"})
        registry.register(_definition("guarded"), lambda args: failure)

        assert await registry.execute(ToolCall("guarded", {})) is failure

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        registry = ToolRegistry()
        started = asyncio.Event()

        async def slow(args: dict) -> str:
            started.set()
            await asyncio.sleep(60)
            return "never"

        registry.register(_definition("slow"), slow)
        task = asyncio.create_task(registry.execute(ToolCall("slow", {})))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
