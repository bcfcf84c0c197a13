"""JSON Schema sanitization for the Cortex structured-output feature.

The backend rejects most validation keywords and requires every object to be
closed. ``sanitize_schema`` rewrites a caller schema to fit:

1. Unsupported keywords are removed after their meaning is appended to the
   node's description, so the model still sees the constraint as text.
2. Nullable unions (``anyOf: [T, {type: null}]`` or ``type: [T, "null"]``)
   collapse to ``T`` and the property becomes optional.
3. Every object node gets ``additionalProperties: false`` and a ``required``
   list naming exactly its non-optional properties.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Literal

UNSUPPORTED_KEYWORDS: tuple[str, ...] = (
    # General
    "default",
    "$schema",
    # Number constraints
    "multipleOf",
    "minimum",
    "maximum",
    "exclusiveMinimum",
    "exclusiveMaximum",
    # String constraints
    "minLength",
    "maxLength",
    "format",
    "pattern",
    # Array constraints
    "uniqueItems",
    "contains",
    "minContains",
    "maxContains",
    "minItems",
    "maxItems",
    # Object constraints
    "patternProperties",
    "minProperties",
    "maxProperties",
    "propertyNames",
)

NodeKind = Literal["object", "array", "union", "leaf"]

# Keywords whose value is a subschema or a list of subschemas.
_SUBSCHEMA_KEYWORDS: frozenset[str] = frozenset(
    {
        "items",
        "prefixItems",
        "additionalItems",
        "additionalProperties",
        "anyOf",
        "oneOf",
        "allOf",
        "not",
        "if",
        "then",
        "else",
    }
)
# Keywords whose value maps names to subschemas (``properties`` is handled apart).
_SUBSCHEMA_MAPS: frozenset[str] = frozenset({"$defs", "definitions", "dependentSchemas"})

_CACHE_LIMIT = 256
# id(input) -> (input, output); holding the input keeps its id from being reused.
_cache: OrderedDict[int, tuple[Any, Any]] = OrderedDict()


def _range(lo: Any, hi: Any, unit: str) -> str | None:
    if lo is not None and hi is not None:
        return f"{lo}-{hi} {unit}"
    if lo is not None:
        return f"minimum {lo} {unit}"
    if hi is not None:
        return f"maximum {hi} {unit}"
    return None


def describe_constraints(node: dict[str, Any]) -> str:
    """Render removable constraints as ``" (a, b, c)"``, or ``""`` when none apply."""
    parts: list[str] = []

    text = _range(node.get("minLength"), node.get("maxLength"), "characters")
    if text:
        parts.append(text)
    if node.get("format"):
        parts.append(f"format: {node['format']}")
    if node.get("pattern"):
        parts.append(f"pattern: {node['pattern']}")

    lo, hi = node.get("minimum"), node.get("maximum")
    if lo is not None and hi is not None:
        parts.append(f"range: {lo}-{hi}")
    elif lo is not None:
        parts.append(f"minimum: {lo}")
    elif hi is not None:
        parts.append(f"maximum: {hi}")
    if node.get("exclusiveMinimum") is not None:
        parts.append(f"> {node['exclusiveMinimum']}")
    if node.get("exclusiveMaximum") is not None:
        parts.append(f"< {node['exclusiveMaximum']}")
    if node.get("multipleOf") is not None:
        parts.append(f"multiple of {node['multipleOf']}")

    text = _range(node.get("minItems"), node.get("maxItems"), "items")
    if text:
        parts.append(text)
    if node.get("uniqueItems"):
        parts.append("unique items")

    text = _range(node.get("minProperties"), node.get("maxProperties"), "properties")
    if text:
        parts.append(text)

    return f" ({', '.join(parts)})" if parts else ""


def _is_null_branch(branch: Any) -> bool:
    return isinstance(branch, dict) and branch.get("type") == "null"


def _node_kind(node: dict[str, Any]) -> NodeKind:
    node_type = node.get("type")
    if node_type == "object" or "properties" in node:
        return "object"
    if node_type == "array" or "items" in node or "prefixItems" in node:
        return "array"
    if any(key in node for key in ("anyOf", "oneOf", "allOf")):
        return "union"
    return "leaf"


def _strip_nullable(node: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Drop the null branch of a nullable union; report whether one was found."""
    optional = False

    branches = node.get("anyOf")
    if isinstance(branches, list) and any(_is_null_branch(b) for b in branches):
        remaining = [b for b in branches if not _is_null_branch(b)]
        optional = True
        node = {k: v for k, v in node.items() if k != "anyOf"}
        if len(remaining) == 1 and isinstance(remaining[0], dict):
            # Branch keys describe the value; outer keys (description) survive.
            node = {**remaining[0], **node}
        elif remaining:
            node["anyOf"] = remaining

    node_type = node.get("type")
    if isinstance(node_type, list) and "null" in node_type:
        remaining_types = [t for t in node_type if t != "null"]
        optional = True
        node = dict(node)
        if len(remaining_types) == 1:
            node["type"] = remaining_types[0]
        elif remaining_types:
            node["type"] = remaining_types
        else:
            node["type"] = "null"

    return node, optional


def _sanitize_node(node: Any) -> tuple[Any, bool]:
    """Return ``(sanitized, optional)`` for one schema node."""
    if not isinstance(node, dict):
        return node, False

    cleaned, optional = _strip_nullable(dict(node))

    constraint_text = describe_constraints(cleaned)
    if constraint_text:
        description = cleaned.get("description")
        if isinstance(description, str) and description:
            if constraint_text not in description:
                cleaned["description"] = description + constraint_text
        else:
            cleaned["description"] = constraint_text.strip()
    for keyword in UNSUPPORTED_KEYWORDS:
        cleaned.pop(keyword, None)

    kind = _node_kind(cleaned)
    if kind == "object":
        properties = cleaned.get("properties")
        if isinstance(properties, dict):
            new_props: dict[str, Any] = {}
            required: list[str] = []
            for key, value in properties.items():
                new_props[key], prop_optional = _sanitize_node(value)
                if not prop_optional:
                    required.append(key)
            cleaned["properties"] = new_props
            cleaned["required"] = required
        else:
            cleaned["required"] = []
        cleaned["additionalProperties"] = False

    for key, value in list(cleaned.items()):
        if key in _SUBSCHEMA_MAPS:
            if isinstance(value, dict):
                cleaned[key] = {name: _sanitize_node(d)[0] for name, d in value.items()}
        elif key in _SUBSCHEMA_KEYWORDS:
            if isinstance(value, list):
                cleaned[key] = [_sanitize_node(branch)[0] for branch in value]
            elif isinstance(value, dict):
                cleaned[key] = _sanitize_node(value)[0]

    return cleaned, optional


def sanitize_schema(schema: Any) -> Any:
    """Return a backend-compatible copy of *schema*.

    Pure and memoized by input identity: passing the same object again returns
    the same result object. Non-dict input is returned unchanged.
    """
    if not isinstance(schema, dict):
        return schema

    hit = _cache.get(id(schema))
    if hit is not None and hit[0] is schema:
        _cache.move_to_end(id(schema))
        return hit[1]

    result, _ = _sanitize_node(schema)
    _cache[id(schema)] = (schema, result)
    if len(_cache) > _CACHE_LIMIT:
        _cache.popitem(last=False)
    return result


def clear_schema_cache() -> None:
    """Forget memoized results."""
    _cache.clear()
