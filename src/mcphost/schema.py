"""
Tool definitions and the shared parameter decoder.

Models send tool arguments as loosely typed JSON. Instead of every handler
checking its own keys, each ToolDefinition carries a list of ParameterSpec
entries and decode_parameters() validates a raw mapping against them once.
Handlers receive a dict that already has the right keys and types.
"""

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

JSON_TYPES = ("string", "integer", "number", "boolean", "array", "object", "any")


class ParameterError(ValueError):
    """Raised when tool arguments do not match the tool's parameters."""


@dataclass(frozen=True)
class ParameterSpec:
    """
    One accepted argument of a tool.

    items describes array elements and properties describes the keys of an
    object; both use the same ParameterSpec shape recursively.
    """
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    default: Any = None
    enum: tuple[Any, ...] | None = None
    items: "ParameterSpec | None" = None
    properties: tuple["ParameterSpec", ...] = ()

    def __post_init__(self) -> None:
        if self.type not in JSON_TYPES:
            raise ValueError(f"Unsupported parameter type '{self.type}' for '{self.name}'")

    def to_json_schema(self) -> dict[str, Any]:
        """Render this parameter as a JSON schema fragment."""
        schema: dict[str, Any] = {}
        if self.type != "any":
            schema["type"] = self.type
        if self.description:
            schema["description"] = self.description
        if self.default is not None:
            schema["default"] = self.default
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        if self.properties:
            schema["properties"] = {p.name: p.to_json_schema() for p in self.properties}
            required = [p.name for p in self.properties if p.required]
            if required:
                schema["required"] = required
        return schema

    @classmethod
    def from_json_schema(
        cls,
        name: str,
        schema: Mapping[str, Any],
        required: bool = False,
    ) -> "ParameterSpec":
        """Build a spec from a JSON schema fragment (as advertised by MCP servers)."""
        schema_type = schema.get("type", "any")
        if isinstance(schema_type, list):
            # ["string", "null"] style unions collapse to the first concrete type
            concrete = [t for t in schema_type if t != "null"]
            schema_type = concrete[0] if concrete else "any"
        if schema_type not in JSON_TYPES:
            schema_type = "any"

        items = None
        if isinstance(schema.get("items"), Mapping):
            items = cls.from_json_schema("items", schema["items"])

        required_names = set(schema.get("required", []))
        properties = tuple(
            cls.from_json_schema(key, value, key in required_names)
            for key, value in (schema.get("properties") or {}).items()
            if isinstance(value, Mapping)
        )

        enum = schema.get("enum")
        return cls(
            name=name,
            type=schema_type,
            description=schema.get("description", ""),
            required=required,
            default=schema.get("default"),
            enum=tuple(enum) if isinstance(enum, list) else None,
            items=items,
            properties=properties,
        )


@dataclass(frozen=True)
class ToolDefinition:
    """
    Definition of a tool that a model can request.

    - name: unique key within a registry
    - description: shown to the model
    - parameters: accepted arguments
    - tags: free-form categories used for filtering
    - enabled: whether the tool is visible for dispatch

    Definitions are immutable; the registry swaps in a copy when the
    enabled flag changes.
    """
    name: str
    description: str
    parameters: tuple[ParameterSpec, ...] = ()
    tags: frozenset[str] = frozenset()
    enabled: bool = True
    tool_type: str = "function"
    output_schema: dict[str, Any] | None = None
    examples: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def input_schema(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments."""
        return {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def function_definition(self) -> dict[str, Any]:
        """Flattened name/description/parameters view for function-calling APIs."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_schema(),
        }

    def render_for_prompt(self) -> str:
        """One catalog entry as shown to the model."""
        lines = [f"- {self.name}: {self.description}"]
        for param in self.parameters:
            flag = "required" if param.required else "optional"
            text = f"    {param.name} ({param.type}, {flag})"
            if param.description:
                text += f": {param.description}"
            lines.append(text)
        return "\n".join(lines)

    @classmethod
    def from_json_schema(
        cls,
        name: str,
        description: str,
        schema: Mapping[str, Any] | None,
        tags: frozenset[str] | set[str] = frozenset(),
        metadata: dict[str, Any] | None = None,
    ) -> "ToolDefinition":
        """Build a definition from an object-typed JSON schema."""
        schema = schema or {}
        required = set(schema.get("required", []))
        parameters = tuple(
            ParameterSpec.from_json_schema(key, value, key in required)
            for key, value in (schema.get("properties") or {}).items()
            if isinstance(value, Mapping)
        )
        return cls(
            name=name,
            description=description,
            parameters=parameters,
            tags=frozenset(tags),
            metadata=dict(metadata or {}),
        )


def decode_parameters(
    definition: ToolDefinition,
    raw: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """
    Validate raw tool arguments against a definition.

    Missing required keys and values of the wrong type raise ParameterError.
    Optional keys that are absent get their declared default. Keys the tool
    does not declare are dropped.

    Raises:
        ParameterError: If the arguments do not fit the parameters
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ParameterError(
            f"Arguments for '{definition.name}' must be an object, got {type(raw).__name__}"
        )

    decoded = _decode_object(definition.parameters, raw, prefix="")

    unknown = set(raw) - {p.name for p in definition.parameters}
    if unknown:
        logger.debug(f"Dropping unknown arguments for {definition.name}: {sorted(unknown)}")
    return decoded


def _decode_object(
    specs: tuple[ParameterSpec, ...],
    raw: Mapping[str, Any],
    prefix: str,
) -> dict[str, Any]:
    decoded: dict[str, Any] = {}
    for spec in specs:
        path = f"{prefix}{spec.name}"
        value = raw.get(spec.name)
        if value is None:
            if spec.required:
                raise ParameterError(f"Missing required parameter '{path}'")
            if spec.default is not None:
                decoded[spec.name] = copy.deepcopy(spec.default)
            continue
        decoded[spec.name] = _coerce(spec, value, path)
    return decoded


def _coerce(spec: ParameterSpec, value: Any, path: str) -> Any:
    kind = spec.type
    if kind == "string":
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ParameterError(f"Parameter '{path}' must be a string")
        result: Any = value if isinstance(value, str) else str(value)
    elif kind == "integer":
        result = _to_integer(value, path)
    elif kind == "number":
        result = _to_number(value, path)
    elif kind == "boolean":
        result = _to_boolean(value, path)
    elif kind == "array":
        if not isinstance(value, (list, tuple)):
            raise ParameterError(f"Parameter '{path}' must be an array")
        if spec.items is None:
            result = list(value)
        else:
            result = [_coerce(spec.items, item, f"{path}[{i}]") for i, item in enumerate(value)]
    elif kind == "object":
        if not isinstance(value, Mapping):
            raise ParameterError(f"Parameter '{path}' must be an object")
        result = _decode_object(spec.properties, value, f"{path}.") if spec.properties else dict(value)
    else:
        result = value

    if spec.enum is not None and result not in spec.enum:
        allowed = ", ".join(str(v) for v in spec.enum)
        raise ParameterError(f"Parameter '{path}' must be one of: {allowed}")
    return result


def _to_integer(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise ParameterError(f"Parameter '{path}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ParameterError(f"Parameter '{path}' must be an integer")


def _to_number(value: Any, path: str) -> float | int:
    if isinstance(value, bool):
        raise ParameterError(f"Parameter '{path}' must be a number")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise ParameterError(f"Parameter '{path}' must be a number")


def _to_boolean(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ParameterError(f"Parameter '{path}' must be a boolean")
