"""Schema sanitizer behavior."""

from __future__ import annotations

from typing import Annotated, Any

from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import BaseModel, Field
import pytest

from cortexlink.models import ResponseFormat
from cortexlink.schema import (
    UNSUPPORTED_KEYWORDS,
    describe_constraints,
    sanitize_schema,
)

pytestmark = pytest.mark.unit


def _walk(node: Any):
    if isinstance(node, dict):
        yield node
        for value in node.values():
            yield from _walk(value)
    elif isinstance(node, list):
        for value in node:
            yield from _walk(value)


def test_constraints_move_into_description() -> None:
    out = sanitize_schema(
        {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 3, "maxLength": 10},
                "age": {"type": "integer", "description": "Age", "minimum": 0},
            },
        }
    )

    name = out["properties"]["name"]
    assert name == {"type": "string", "description": "3-10 characters"}
    assert out["properties"]["age"]["description"] == "Age (minimum: 0)"
    assert out["required"] == ["name", "age"]
    assert out["additionalProperties"] is False


def test_nullable_any_of_collapses_and_becomes_optional() -> None:
    out = sanitize_schema(
        {
            "type": "object",
            "properties": {
                "x": {"anyOf": [{"type": "string"}, {"type": "null"}]},
                "y": {"type": "integer"},
            },
        }
    )

    assert out["properties"]["x"] == {"type": "string"}
    assert out["required"] == ["y"]


def test_nullable_type_list_collapses() -> None:
    out = sanitize_schema(
        {"type": "object", "properties": {"tag": {"type": ["string", "null"]}}}
    )
    assert out["properties"]["tag"]["type"] == "string"
    assert out["required"] == []


def test_nullable_union_with_several_branches_keeps_the_rest() -> None:
    out = sanitize_schema(
        {
            "type": "object",
            "properties": {
                "v": {
                    "anyOf": [{"type": "string"}, {"type": "integer"}, {"type": "null"}],
                    "description": "value",
                }
            },
        }
    )
    v = out["properties"]["v"]
    assert v["anyOf"] == [{"type": "string"}, {"type": "integer"}]
    assert v["description"] == "value"
    assert out["required"] == []


def test_caller_required_list_is_replaced() -> None:
    out = sanitize_schema(
        {
            "type": "object",
            "properties": {"a": {"type": "string"}, "b": {"type": "string"}},
            "required": ["a"],
        }
    )
    assert out["required"] == ["a", "b"]


def test_object_without_properties_is_closed() -> None:
    out = sanitize_schema({"type": "object"})
    assert out == {"type": "object", "required": [], "additionalProperties": False}


def test_nested_arrays_and_defs_are_sanitized() -> None:
    schema = {
        "type": "object",
        "properties": {
            "items": {
                "type": "array",
                "minItems": 1,
                "uniqueItems": True,
                "items": {"$ref": "#/$defs/Item"},
            }
        },
        "$defs": {
            "Item": {
                "type": "object",
                "properties": {"id": {"type": "string", "format": "uuid"}},
            }
        },
    }

    out = sanitize_schema(schema)

    arr = out["properties"]["items"]
    assert arr["description"] == "minimum 1 items, unique items"
    assert "minItems" not in arr and "uniqueItems" not in arr
    item = out["$defs"]["Item"]
    assert item["additionalProperties"] is False
    assert item["properties"]["id"] == {"type": "string", "description": "format: uuid"}


def test_input_is_not_mutated() -> None:
    schema = {"type": "object", "properties": {"n": {"type": "number", "maximum": 5}}}
    sanitize_schema(schema)
    assert schema == {
        "type": "object",
        "properties": {"n": {"type": "number", "maximum": 5}},
    }


def test_memoized_by_identity() -> None:
    schema = {"type": "object", "properties": {"a": {"type": "string"}}}
    first = sanitize_schema(schema)
    assert sanitize_schema(schema) is first
    # An equal but distinct object is sanitized afresh.
    assert sanitize_schema(dict(schema)) is not first


@pytest.mark.parametrize("value", [None, "string", 3, ["a"]])
def test_non_dict_input_passes_through(value: Any) -> None:
    assert sanitize_schema(value) is value


def test_describe_constraints_formats() -> None:
    assert describe_constraints({}) == ""
    assert (
        describe_constraints({"minimum": 1, "maximum": 9, "multipleOf": 2})
        == " (range: 1-9, multiple of 2)"
    )
    assert describe_constraints({"exclusiveMinimum": 0}) == " (> 0)"
    assert describe_constraints({"pattern": "^a$"}) == " (pattern: ^a$)"


class Point(BaseModel):
    coords: tuple[Annotated[int, Field(ge=0)], Annotated[str, Field(max_length=3)]]


def test_pydantic_tuple_fields_are_sanitized() -> None:
    out = sanitize_schema(ResponseFormat(Point).schema_json())

    first, second = out["properties"]["coords"]["prefixItems"]
    assert first == {"type": "integer", "description": "minimum: 0"}
    assert second == {"type": "string", "description": "maximum 3 characters"}
    for node in _walk(out):
        assert not set(UNSUPPORTED_KEYWORDS) & set(node)


@pytest.mark.parametrize("keyword", ["not", "if", "then", "else", "additionalItems"])
def test_single_subschema_keywords_are_sanitized(keyword: str) -> None:
    out = sanitize_schema(
        {keyword: {"type": "object", "properties": {"a": {"type": "string", "format": "date"}}}}
    )

    inner = out[keyword]
    assert inner["additionalProperties"] is False
    assert inner["required"] == ["a"]
    assert inner["properties"]["a"] == {"type": "string", "description": "format: date"}


def test_dependent_schemas_are_sanitized() -> None:
    out = sanitize_schema(
        {
            "type": "object",
            "properties": {"card": {"type": "string"}},
            "dependentSchemas": {
                "card": {"type": "object", "properties": {"cvv": {"type": "string", "minLength": 3}}}
            },
        }
    )

    dependent = out["dependentSchemas"]["card"]
    assert dependent["additionalProperties"] is False
    assert dependent["properties"]["cvv"] == {"type": "string", "description": "minimum 3 characters"}


_types = st.sampled_from(["string", "integer", "number", "boolean"])

_leaf = st.fixed_dictionaries(
    {"type": st.one_of(_types, _types.map(lambda t: [t, "null"]))},
    optional={
        "minLength": st.integers(0, 5),
        "maximum": st.integers(0, 100),
        "format": st.sampled_from(["date", "email"]),
        "default": st.integers(),
        "pattern": st.just("^x+$"),
    },
)

# Prefixed names keep property keys from colliding with schema keywords.
_names = st.from_regex(r"p_[a-z]{1,4}", fullmatch=True)

_schema = st.recursive(
    _leaf,
    lambda children: st.one_of(
        st.builds(
            lambda props: {"type": "object", "properties": props, "minProperties": 1},
            st.dictionaries(_names, children, max_size=3),
        ),
        st.builds(lambda item: {"type": "array", "items": item, "maxItems": 4}, children),
        st.builds(
            lambda items: {"type": "array", "prefixItems": items, "minItems": 1},
            st.lists(children, min_size=1, max_size=3),
        ),
        st.builds(lambda c: {"anyOf": [c, {"type": "null"}]}, children),
        st.builds(lambda c: {"not": c}, children),
    ),
    max_leaves=8,
)


@given(schema=_schema)
@settings(max_examples=25, deadline=None, derandomize=True)
def test_sanitized_output_never_has_unsupported_keywords(schema: dict[str, Any]) -> None:
    out = sanitize_schema(schema)

    for node in _walk(out):
        assert not set(UNSUPPORTED_KEYWORDS) & set(node)
        if node.get("type") == "object":
            assert node["additionalProperties"] is False
            assert set(node["required"]) <= set(node.get("properties", {}))
        node_type = node.get("type")
        assert not (isinstance(node_type, list) and "null" in node_type)
