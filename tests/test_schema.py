from __future__ import annotations

from groundrag.ingestion.schema import circular_marker, flatten_schema, ref_name


def test_ref_name_takes_last_segment():
    assert ref_name("#/components/schemas/User") == "User"
    assert ref_name("#/definitions/Pet") == "Pet"


def test_object_properties_are_listed_with_requiredness():
    schema = {
        "type": "object",
        "required": ["id"],
        "properties": {
            "id": {"type": "integer", "format": "int64"},
            "status": {"type": "string", "enum": ["active", "blocked"]},
        },
    }
    text = flatten_schema(schema)
    assert "type: object" in text
    assert "  - id (required): type: integer\nformat: int64" in text
    assert "  - status (optional): type: string\nallowed values: active, blocked" in text


def test_mutual_cycle_terminates_with_marker():
    registry = {
        "A": {"type": "object", "properties": {"b": {"$ref": "#/components/schemas/B"}}},
        "B": {"type": "object", "properties": {"a": {"$ref": "#/components/schemas/A"}}},
    }
    text = flatten_schema({"$ref": "#/components/schemas/A"}, registry)
    assert circular_marker("A") in text
    assert circular_marker("B") not in text


def test_self_reference_collapses_to_marker():
    registry = {
        "Node": {
            "type": "object",
            "properties": {"children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}}},
        }
    }
    text = flatten_schema({"$ref": "#/components/schemas/Node"}, registry)
    assert "array item: [circular reference: Node]" in text


def test_shared_reference_expands_in_each_branch():
    registry = {
        "Address": {"type": "object", "properties": {"city": {"type": "string", "description": "City name"}}},
        "Order": {
            "type": "object",
            "properties": {
                "billing": {"$ref": "#/components/schemas/Address"},
                "shipping": {"$ref": "#/components/schemas/Address"},
            },
        },
    }
    text = flatten_schema({"$ref": "#/components/schemas/Order"}, registry)
    assert text.count("description: City name") == 2
    assert "circular reference" not in text


def test_missing_reference_yields_bare_name():
    assert flatten_schema({"$ref": "#/components/schemas/Ghost"}, {}) == "Ghost"


def test_example_is_rendered_as_json():
    text = flatten_schema({"type": "string", "example": {"name": "kim"}})
    assert 'example: {"name": "kim"}' in text


def test_non_mapping_nodes_flatten_to_empty_text():
    assert flatten_schema(None) == ""
    assert flatten_schema("string") == ""
    assert flatten_schema({}) == ""
