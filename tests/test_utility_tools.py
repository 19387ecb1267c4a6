"""Tests for the date/time and calculator tools."""

import pytest

from mcphost import utility_tools
from mcphost.tools import ToolRegistry
from mcphost.types import ToolCall, ToolFailure, ToolSuccess
from mcphost.utility_tools import evaluate_expression


@pytest.fixture
def registry():
    registry = ToolRegistry()
    utility_tools.register(registry)
    return registry


class TestGetDateTime:
    """Tests for get_date_time."""

    @pytest.mark.asyncio
    async def test_local_time(self, registry):
        result = await registry.execute(ToolCall("get_date_time", {}))

        assert isinstance(result, ToolSuccess)
        assert {"current_time", "formatted", "timezone", "unix_timestamp"} <= set(result.value)

    @pytest.mark.asyncio
    async def test_named_timezone(self, registry):
        result = await registry.execute(ToolCall("get_date_time", {"timezone": "UTC"}))

        assert result.value["timezone"] == "UTC"
        assert result.value["current_time"].endswith("+00:00")

    @pytest.mark.asyncio
    async def test_unknown_timezone(self, registry):
        result = await registry.execute(ToolCall("get_date_time", {"timezone": "Mars/Olympus"}))

        assert isinstance(result, ToolFailure)
        assert "Mars/Olympus" in result.error


class TestCalculate:
    """Tests for calculate and the expression evaluator."""

    @pytest.mark.parametrize("expression, expected", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("-4 + 10", 6),
        ("7 // 2", 3),
        ("7 % 4", 3),
        ("2 ** 10", 1024),
        ("1 / 4", 0.25),
    ])
    def test_arithmetic(self, expression, expected):
        assert evaluate_expression(expression) == expected

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('ls')",
        "abs(-1)",
        "x + 1",
        "'a' * 3",
        "1 if True else 2",
    ])
    def test_rejects_non_arithmetic(self, expression):
        with pytest.raises(ValueError):
            evaluate_expression(expression)

    def test_huge_exponent_rejected(self):
        with pytest.raises(ValueError, match="Exponent"):
            evaluate_expression("10 ** 100000")

    @pytest.mark.parametrize("expression", [
        "((9 ** 999) ** 999) ** 999",
        "(9 ** 999) ** 9",
        " * ".join(["(2 ** 999)"] * 11),
    ])
    def test_oversized_results_rejected(self, expression):
        with pytest.raises(ValueError, match="too large"):
            evaluate_expression(expression)

    def test_large_but_bounded_power(self):
        assert evaluate_expression("9 ** 999") == 9 ** 999

    def test_complex_result_rejected(self):
        with pytest.raises(ValueError, match="real"):
            evaluate_expression("(-8) ** 0.5")

    @pytest.mark.asyncio
    async def test_oversized_result_is_tool_failure(self, registry):
        result = await registry.execute(ToolCall("calculate", {"expression": "(9 ** 999) ** 9"}))

        assert isinstance(result, ToolFailure)
        assert "too large" in result.error

    @pytest.mark.asyncio
    async def test_tool_result(self, registry):
        result = await registry.execute(ToolCall("calculate", {"expression": "6 * 7"}))
        assert result == ToolSuccess({"result": 42, "expression": "6 * 7"})

    @pytest.mark.asyncio
    async def test_division_by_zero(self, registry):
        result = await registry.execute(ToolCall("calculate", {"expression": "1 / 0"}))

        assert isinstance(result, ToolFailure)
        assert "zero" in result.error.lower()

    @pytest.mark.asyncio
    async def test_syntax_error(self, registry):
        result = await registry.execute(ToolCall("calculate", {"expression": "1 +"}))
        assert isinstance(result, ToolFailure)
