"""Render JSON-Schema style type graphs as retrievable text."""

from __future__ import annotations

import json
from typing import AbstractSet, Any, List, Mapping


def ref_name(ref: str) -> str:
    """Return the schema name a ``$ref`` points at (``#/components/schemas/User`` -> ``User``)."""

    return ref.rstrip("/").rsplit("/", 1)[-1]


def circular_marker(name: str) -> str:
    return f"[circular reference: {name}]"


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return json.dumps(value, default=str)


def flatten_schema(
    node: Any,
    registry: Mapping[str, Any] | None = None,
    visited: AbstractSet[str] = frozenset(),
) -> str:
    """Flatten ``node`` into descriptive text.

    ``$ref`` edges are resolved against ``registry``. ``visited`` holds the
    reference names on the current path only: a name is added before its
    schema is expanded and is gone again for sibling branches, so shared
    (diamond) references expand fully while cycles collapse to a marker.
    Recursion through references is therefore bounded by the number of
    distinct names in the registry.
    """

    if not isinstance(node, Mapping) or not node:
        return ""

    ref = node.get("$ref")
    if isinstance(ref, str):
        name = ref_name(ref)
        if not name:
            return ""
        if name in visited:
            return circular_marker(name)
        target = (registry or {}).get(name)
        if target is None:
            return name
        return flatten_schema(target, registry, frozenset(visited) | {name})

    parts: List[str] = []
    if node.get("type") is not None:
        parts.append(f"type: {_scalar_text(node['type'])}")
    if node.get("format") is not None:
        parts.append(f"format: {_scalar_text(node['format'])}")
    if isinstance(node.get("description"), str) and node["description"]:
        parts.append(f"description: {node['description']}")
    if "example" in node:
        parts.append(f"example: {json.dumps(node['example'], default=str, ensure_ascii=False)}")
    if isinstance(node.get("enum"), list):
        parts.append("allowed values: " + ", ".join(_scalar_text(value) for value in node["enum"]))

    properties = node.get("properties")
    if isinstance(properties, Mapping):
        required = node.get("required") if isinstance(node.get("required"), list) else []
        lines = []
        for prop_name, prop_schema in properties.items():
            label = "(required)" if prop_name in required else "(optional)"
            prop_text = flatten_schema(prop_schema, registry, visited)
            lines.append(f"  - {prop_name} {label}: {prop_text}")
        if lines:
            parts.append("properties:\n" + "\n".join(lines))

    if "items" in node and node["items"]:
        parts.append(f"array item: {flatten_schema(node['items'], registry, visited)}")

    return "\n".join(parts)
