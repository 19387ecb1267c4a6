"""
Parsing of raw model output.

Streaming providers answer with one JSON object per line, each carrying a
"response" text fragment. A model asks for a tool by emitting a line of
the form

    {"type": "tool_use", "tool": "<name>", "tool_input": {...}}

either directly in the raw output or inside the text it generates.
interpret() turns raw output into a TextResponse or a ToolUseResponse.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from mcphost.types import MCPResponse, TextResponse, ToolUseEnvelope, ToolUseResponse

logger = logging.getLogger(__name__)

TOOL_USE_MARKERS = ("tool_use", "tool_input", "<tool_call>")

RecoveryAdapter = Callable[[str], ToolUseEnvelope | None]

_TOOL_CALL_BLOCK = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def has_tool_marker(text: str) -> bool:
    """Cheap check before any JSON parsing happens."""
    return any(marker in text for marker in TOOL_USE_MARKERS)


def parse_envelope_line(line: str) -> ToolUseEnvelope | None:
    """
    Parse a single line as a tool-use envelope.

    Returns None for blank lines, malformed JSON and JSON that is not an
    envelope. The line is kept verbatim on the envelope.
    """
    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed JSON line: {stripped[:100]}")
        return None
    if not isinstance(data, dict):
        return None

    tool = data.get("tool")
    tool_input = data.get("tool_input")
    if not isinstance(tool, str) or not tool or not isinstance(tool_input, dict):
        return None
    if data.get("type", "tool_use") != "tool_use":
        return None
    return ToolUseEnvelope(tool=tool, input=tool_input, raw_line=line)


def extract_text(raw: str) -> str:
    """
    Concatenate the "response" fields of every JSON line.

    Lines that are not JSON are skipped. Output where no line carries a
    "response" field is plain text already and is returned stripped.
    """
    parts: list[str] = []
    found = False
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug(f"Skipping non-JSON line during text extraction: {stripped[:100]}")
            continue
        if isinstance(data, dict) and "response" in data:
            found = True
            fragment = data["response"]
            parts.append(fragment if isinstance(fragment, str) else str(fragment))

    if not found:
        return raw.strip()
    return "".join(parts)


def find_tool_use(raw: str) -> ToolUseEnvelope | None:
    """
    First tool-use envelope in the output.

    Raw lines are scanned first, then the lines of the text the model
    generated (for providers that wrap the envelope in "response" fields).
    """
    for line in raw.splitlines():
        envelope = parse_envelope_line(line)
        if envelope is not None:
            return envelope

    text = extract_text(raw)
    if text != raw.strip():
        for line in text.splitlines():
            envelope = parse_envelope_line(line)
            if envelope is not None:
                return envelope
    return None


def interpret(raw: str, recovery: RecoveryAdapter | None = None) -> MCPResponse:
    """
    Classify one generation's raw output.

    - no tool-use marker: TextResponse with the extracted text
    - a parsable envelope: ToolUseResponse
    - a marker but no envelope: the recovery adapter gets a chance; if it
      finds nothing the raw output is returned verbatim as text
    """
    if not has_tool_marker(raw):
        return TextResponse(extract_text(raw))

    envelope = find_tool_use(raw)
    if envelope is None and recovery is not None:
        envelope = recovery(raw)
    if envelope is None:
        logger.info("Tool-use marker present but no envelope could be parsed")
        return TextResponse(raw)
    return ToolUseResponse(tool=envelope.tool, input=envelope.input, raw_line=envelope.raw_line)


def _envelope_from_object(data: Any, raw: str) -> ToolUseEnvelope | None:
    if not isinstance(data, dict):
        return None

    tool_input = data.get("tool_input")
    kind = data.get("type")
    if isinstance(tool_input, dict):
        tool = data.get("tool")
        if isinstance(tool, str) and tool and kind in (None, "tool_use"):
            return ToolUseEnvelope(tool, tool_input, raw)
        # {"type": "<tool name>", "tool_input": {...}}
        if isinstance(kind, str) and kind and kind != "tool_use" and tool is None:
            return ToolUseEnvelope(kind, tool_input, raw)

    tool = data.get("tool") or data.get("name")
    arguments = data.get("parameters", data.get("arguments"))
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            return None
    if isinstance(tool, str) and tool and isinstance(arguments, dict):
        return ToolUseEnvelope(tool, arguments, raw)
    return None


def _json_objects(text: str) -> list[tuple[Any, str]]:
    """Every top-level JSON object embedded in free text."""
    decoder = json.JSONDecoder()
    found: list[tuple[Any, str]] = []
    index = text.find("{")
    while index != -1:
        try:
            data, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("{", index + 1)
            continue
        found.append((data, text[index:end]))
        index = text.find("{", end)
    return found


def recover_tool_use(raw: str) -> ToolUseEnvelope | None:
    """
    Default recovery adapter for output that mentions a tool but has no
    well-formed envelope line.

    Tries, in order: <tool_call>{...}</tool_call> blocks, fenced ```json
    blocks, and any JSON object embedded in the text (including ones that
    span several lines).
    """
    candidates = [raw]
    text = extract_text(raw)
    if text != raw.strip():
        candidates.append(text)

    for candidate in candidates:
        for pattern in (_TOOL_CALL_BLOCK, _FENCED_JSON):
            for match in pattern.finditer(candidate):
                try:
                    data = json.loads(match.group(1))
                except json.JSONDecodeError:
                    continue
                envelope = _envelope_from_object(data, match.group(0))
                if envelope is not None:
                    return envelope

        for data, source in _json_objects(candidate):
            envelope = _envelope_from_object(data, source)
            if envelope is not None:
                return envelope
    return None
