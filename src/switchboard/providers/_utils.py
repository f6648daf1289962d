"""Shared utilities for provider implementations."""

from __future__ import annotations

from copy import deepcopy
import inspect
import json
import logging
import math
from typing import Any
import uuid

from json_repair import repair_json

from switchboard.errors import ToolCallParseError
from switchboard.providers._compat import SCHEMA_TOOL_NAME
from switchboard.types import TextPart, ToolCallPart

logger = logging.getLogger(__name__)

_FLOAT_KEYS = frozenset({"minimum", "maximum", "multipleOf"})
_INT_KEYS = frozenset({"minLength", "maxLength", "minItems", "maxItems"})
# Keys whose value maps names to subschemas rather than being a schema itself.
_SCHEMA_MAP_KEYS = frozenset(
    {"properties", "patternProperties", "$defs", "definitions"}
)


def _coerce_number(value: Any, *, integer: bool) -> Any:
    """Convert numeric-looking strings; leave everything else untouched."""
    if not isinstance(value, str):
        return value
    try:
        number = float(value.strip())
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    if integer:
        return int(number)
    return int(number) if number.is_integer() and "." not in value else number


def _normalize_type(value: Any) -> Any:
    if value is None:
        return "object"
    if isinstance(value, list):
        for entry in value:
            if isinstance(entry, str) and entry.lower() != "null":
                return entry.lower()
        return "object"
    if isinstance(value, str):
        return value.lower()
    return value


def sanitize_schema(schema: Any) -> dict[str, Any]:
    """Normalize a parameter schema for providers with a strict dialect.

    The canonical dialect tolerates ``type: null`` and unions such as
    ``["object", "null"]``. After sanitizing:
    1. every ``type`` is a single lowercase string
    2. objects declaring ``properties`` are typed ``object``
    3. numeric constraints given as strings are numbers
    4. the root is an object with ``properties``

    The input is never mutated.
    """
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {}
        for key, value in node.items():
            if key in _SCHEMA_MAP_KEYS and isinstance(value, dict):
                updated[key] = {name: walk(sub) for name, sub in value.items()}
            elif key == "type" and not isinstance(value, dict):
                updated[key] = _normalize_type(value)
            elif isinstance(value, (dict, list)):
                updated[key] = walk(value)
            elif key in _FLOAT_KEYS:
                updated[key] = _coerce_number(value, integer=False)
            elif key in _INT_KEYS:
                updated[key] = _coerce_number(value, integer=True)
            else:
                updated[key] = value

        if "properties" in updated and not updated.get("type"):
            updated["type"] = "object"
        return updated

    result: dict[str, Any] = walk(deepcopy(schema))

    root_type = result.get("type")
    if not isinstance(root_type, str) or not root_type:
        result["type"] = "object"
    if result.get("properties") is None:
        result["properties"] = {}
    return result


def parse_tool_arguments(raw: str | None, *, tool_name: str) -> dict[str, Any]:
    """Parse streamed or returned tool-call arguments leniently.

    Empty buffers yield ``{}``. Malformed JSON goes through ``json_repair``.
    When nothing usable survives, the synthetic schema tool falls back to
    ``{}`` while a real tool raises ``ToolCallParseError``.
    """
    if raw is None or not raw.strip():
        return {}

    value: Any
    try:
        value = json.loads(raw)
    except ValueError:
        try:
            value = repair_json(raw, return_objects=True)
        except Exception as e:
            logger.debug("json_repair failed for tool %r: %s", tool_name, e)
            value = None
        else:
            logger.debug("Repaired malformed arguments for tool %r", tool_name)
        if value == "":
            value = None
    else:
        if value is None:
            return {}

    if isinstance(value, dict):
        return value

    if tool_name == SCHEMA_TOOL_NAME:
        logger.warning(
            "Discarding unparseable arguments for %s: %.200s", tool_name, raw
        )
        return {}
    raise ToolCallParseError(
        f"Could not parse arguments for tool call {tool_name!r}",
        hint="The provider returned malformed JSON; retry the request.",
        tool_name=tool_name,
        raw_arguments=raw,
    )


def new_call_id() -> str:
    """Generate an id for a provider call that arrived without one."""
    return f"call_{uuid.uuid4().hex[:8]}"


def unwrap_schema_call(part: ToolCallPart) -> TextPart | ToolCallPart:
    """Turn a call to the synthetic schema tool back into JSON text."""
    if part.name == SCHEMA_TOOL_NAME:
        return TextPart(text=json.dumps(part.args, separators=(",", ":")))
    return part


async def close_stream(stream: Any) -> None:
    """Release an SDK stream on every exit path.

    The openai and anthropic ``AsyncStream`` expose ``close()``; plain async
    generators (google-genai) expose ``aclose()``.
    """
    if stream is None:
        return
    close = getattr(stream, "close", None) or getattr(stream, "aclose", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


def first_set(*values: Any, default: Any = None) -> Any:
    """Return the first value that is not None, else *default*."""
    for value in values:
        if value is not None:
            return value
    return default
