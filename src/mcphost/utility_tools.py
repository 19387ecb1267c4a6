"""Date/time and arithmetic tools."""

import ast
import logging
import operator
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from mcphost.schema import ParameterSpec, ToolDefinition
from mcphost.tools import ToolRegistry
from mcphost.types import ToolFailure

logger = logging.getLogger(__name__)

UTILITY_TAG = "utility"

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

# Keeps 10 ** 10 ** 10 style expressions from hanging the event loop
MAX_EXPONENT = 1000
# Integer operands and results are capped at this many bits
MAX_INT_BITS = 10_000


def _check_size(value: int | float) -> int | float:
    if isinstance(value, complex):
        raise ValueError("Result is not a real number")
    if isinstance(value, int) and value.bit_length() > MAX_INT_BITS:
        raise ValueError(f"Result too large: more than {MAX_INT_BITS} bits")
    return value


def _check_operands(op: ast.operator, left: int | float, right: int | float) -> None:
    """Reject powers too expensive to compute before computing them."""
    if isinstance(op, ast.Pow):
        if abs(right) > MAX_EXPONENT:
            raise ValueError(f"Exponent too large: {right}")
        if isinstance(left, int) and isinstance(right, int) and right > 0 and abs(left) > 1:
            if left.bit_length() * right > MAX_INT_BITS:
                raise ValueError(f"Result too large: more than {MAX_INT_BITS} bits")


async def get_date_time(args: dict[str, Any]) -> dict[str, Any] | ToolFailure:
    """Current time in the requested IANA timezone, or local time."""
    zone_name = args.get("timezone")
    if zone_name:
        try:
            now = datetime.now(ZoneInfo(zone_name))
        except (ZoneInfoNotFoundError, ValueError):
            return ToolFailure(f"Unknown timezone: {zone_name}", {"timezone": zone_name})
        label = zone_name
    else:
        now = datetime.now().astimezone()
        label = now.tzname() or "local"

    return {
        "current_time": now.isoformat(),
        "formatted": now.strftime("%Y-%m-%d %H:%M:%S"),
        "timezone": label,
        "unix_timestamp": int(now.timestamp()),
    }


def evaluate_expression(expression: str) -> int | float:
    """
    Evaluate an arithmetic expression without eval().

    Only numeric literals, + - * / // % **, unary signs and parentheses
    are accepted.

    Raises:
        ValueError: For anything else, including division by zero
    """
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ValueError(f"Invalid expression: {expression}") from e
    return _evaluate(tree.body)


def _evaluate(node: ast.AST) -> int | float:
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return _check_size(node.value)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        _check_operands(node.op, left, right)
        try:
            return _check_size(_BINARY_OPS[type(node.op)](left, right))
        except ZeroDivisionError as e:
            raise ValueError("Division by zero") from e
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


async def calculate(args: dict[str, Any]) -> dict[str, Any] | ToolFailure:
    expression = args["expression"]
    try:
        result = evaluate_expression(expression)
    except (ValueError, OverflowError) as e:
        return ToolFailure(str(e), {"expression": expression})
    return {"result": result, "expression": expression}


def definitions() -> list[tuple[ToolDefinition, Any]]:
    tags = frozenset({UTILITY_TAG})
    return [
        (ToolDefinition(
            name="get_date_time",
            description="Get the current date and time, optionally in a specific timezone.",
            parameters=(
                ParameterSpec("timezone", "string", "IANA timezone such as Europe/Paris"),
            ),
            tags=tags,
        ), get_date_time),
        (ToolDefinition(
            name="calculate",
            description="Evaluate an arithmetic expression (+ - * / // % ** and parentheses).",
            parameters=(
                ParameterSpec("expression", "string", "Expression to evaluate", required=True),
            ),
            tags=tags,
        ), calculate),
    ]


def register(registry: ToolRegistry) -> None:
    for definition, handler in definitions():
        registry.register(definition, handler)
