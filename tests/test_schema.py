"""Schema sanitizer and lenient tool-argument parsing."""

from __future__ import annotations

import copy
import json
from typing import Any

from hypothesis import given
from hypothesis import strategies as st
import pytest

from switchboard.errors import ToolCallParseError
from switchboard.providers._compat import SCHEMA_TOOL_NAME
from switchboard.providers._utils import parse_tool_arguments, sanitize_schema

pytestmark = pytest.mark.unit


# =============================================================================
# Strategies
# =============================================================================

_TYPE_VALUES = st.one_of(
    st.none(),
    st.sampled_from(["STRING", "Object", "integer", "NUMBER", "array", "boolean"]),
    st.lists(st.sampled_from(["null", "string", "OBJECT", "number"]), max_size=3),
)
_NUMERIC_STRINGS = st.integers(min_value=0, max_value=500).map(str)
_PROPERTY_NAMES = st.sampled_from(["path", "query", "depth", "mode", "items_"])


def _schemas(depth: int) -> st.SearchStrategy[dict[str, Any]]:
    leaf = st.fixed_dictionaries(
        {"type": _TYPE_VALUES},
        optional={
            "minimum": _NUMERIC_STRINGS,
            "maxLength": _NUMERIC_STRINGS,
            "description": st.text(max_size=10),
        },
    )
    if depth == 0:
        return leaf
    child = _schemas(depth - 1)
    return st.one_of(
        leaf,
        st.fixed_dictionaries(
            {"properties": st.dictionaries(_PROPERTY_NAMES, child, max_size=3)},
            optional={"type": _TYPE_VALUES, "items": child},
        ),
    )


def _walk(node: Any):
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _walk(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item)


# =============================================================================
# Sanitizer properties
# =============================================================================


@given(_schemas(3))
def test_sanitized_schema_has_single_lowercase_types(schema: dict[str, Any]) -> None:
    result = sanitize_schema(schema)

    assert result["type"] == result["type"].lower()
    assert isinstance(result["properties"], dict)
    for node in _walk(result):
        if "type" in node and not isinstance(node["type"], dict):
            assert isinstance(node["type"], str)
            assert node["type"] == node["type"].lower()
            assert node["type"] != "null"
        if "properties" in node:
            assert node.get("type")


@given(_schemas(3))
def test_sanitize_never_mutates_input(schema: dict[str, Any]) -> None:
    before = copy.deepcopy(schema)
    sanitize_schema(schema)
    assert schema == before


@given(_schemas(3))
def test_sanitize_is_idempotent(schema: dict[str, Any]) -> None:
    once = sanitize_schema(schema)
    assert sanitize_schema(once) == once


@given(_schemas(2))
def test_numeric_string_constraints_become_numbers(schema: dict[str, Any]) -> None:
    for node in _walk(sanitize_schema(schema)):
        if "minimum" in node:
            assert isinstance(node["minimum"], (int, float))
        if "maxLength" in node:
            assert isinstance(node["maxLength"], int)


# =============================================================================
# Sanitizer examples
# =============================================================================


def test_nullable_union_collapses_to_first_concrete_type() -> None:
    schema = {
        "type": ["object", "null"],
        "properties": {"q": {"type": ["null", "STRING"], "minLength": "1"}},
    }

    result = sanitize_schema(schema)

    assert result["type"] == "object"
    assert result["properties"]["q"] == {"type": "string", "minLength": 1}


def test_type_none_and_missing_type_default_to_object() -> None:
    result = sanitize_schema({"type": None, "properties": {"inner": {"properties": {}}}})

    assert result["type"] == "object"
    assert result["properties"]["inner"]["type"] == "object"


def test_root_without_properties_gets_empty_properties() -> None:
    assert sanitize_schema({"type": "OBJECT"}) == {"type": "object", "properties": {}}


@pytest.mark.parametrize("value", [None, "schema", 3, ["object"]])
def test_non_dict_schema_becomes_empty_object(value: Any) -> None:
    assert sanitize_schema(value) == {"type": "object", "properties": {}}


def test_property_named_type_is_not_treated_as_a_type_keyword() -> None:
    schema = {
        "type": "object",
        "properties": {"type": {"type": "STRING", "enum": ["a", "b"]}},
    }

    result = sanitize_schema(schema)

    assert result["properties"]["type"] == {"type": "string", "enum": ["a", "b"]}


def test_property_named_properties_gets_no_injected_siblings() -> None:
    schema = {
        "type": "object",
        "properties": {"properties": {"type": "object", "properties": {}}},
        "$defs": {"minimum": {"type": "INTEGER", "minimum": "1"}},
    }

    result = sanitize_schema(schema)

    assert set(result["properties"]) == {"properties"}
    assert result["properties"]["properties"] == {"type": "object", "properties": {}}
    assert result["$defs"] == {"minimum": {"type": "integer", "minimum": 1}}
    assert sanitize_schema(result) == result


def test_float_constraints_keep_fractions() -> None:
    result = sanitize_schema(
        {"properties": {"x": {"type": "number", "minimum": "0.5", "multipleOf": "2"}}}
    )

    assert result["properties"]["x"]["minimum"] == 0.5
    assert result["properties"]["x"]["multipleOf"] == 2


def test_non_numeric_constraint_strings_are_left_alone() -> None:
    result = sanitize_schema({"properties": {"x": {"maxItems": "many"}}})
    assert result["properties"]["x"]["maxItems"] == "many"


# =============================================================================
# Lenient argument parsing
# =============================================================================


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_empty_arguments_parse_to_empty_dict(raw: str | None) -> None:
    assert parse_tool_arguments(raw, tool_name="read_file") == {}


def test_valid_json_object_is_returned() -> None:
    raw = json.dumps({"path": "/src", "depth": 2})
    assert parse_tool_arguments(raw, tool_name="ls") == {"path": "/src", "depth": 2}


def test_truncated_json_is_repaired() -> None:
    assert parse_tool_arguments('{"path": "/src"', tool_name="ls") == {"path": "/src"}


def test_unrecoverable_arguments_raise_for_real_tools() -> None:
    with pytest.raises(ToolCallParseError) as excinfo:
        parse_tool_arguments("[1, 2, 3]", tool_name="ls")

    assert excinfo.value.tool_name == "ls"
    assert excinfo.value.raw_arguments == "[1, 2, 3]"


def test_unrecoverable_arguments_fall_back_for_schema_tool() -> None:
    assert parse_tool_arguments("[1, 2, 3]", tool_name=SCHEMA_TOOL_NAME) == {}
