"""Tests for tool parameter schema normalization."""

from codeloop.ai.tools.schema import (
    ObjectSchema,
    UnionSchema,
    normalize_tool_parameters,
    parse_schema,
    strip_unsupported,
)


class TestParse:
    def test_empty_schema_is_empty_object(self):
        assert parse_schema(None) == ObjectSchema()
        assert parse_schema({}) == ObjectSchema()

    def test_any_of_parses_as_union(self):
        shape = parse_schema({"anyOf": [{"properties": {"a": {"type": "string"}}}]})

        assert isinstance(shape, UnionSchema)
        assert shape.variants[0].properties == {"a": {"type": "string"}}

    def test_one_of_parses_as_union(self):
        assert isinstance(parse_schema({"oneOf": [{"properties": {}}]}), UnionSchema)


class TestNormalize:
    def test_top_level_is_always_object(self):
        assert normalize_tool_parameters(None) == {"type": "object", "properties": {}}

    def test_plain_object_keeps_required_and_description(self):
        result = normalize_tool_parameters(
            {
                "type": "object",
                "description": "read a file",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            }
        )

        assert result == {
            "type": "object",
            "properties": {"path": {"type": "string"}},
            "required": ["path"],
            "description": "read a file",
        }

    def test_union_merges_properties_and_intersects_required(self):
        result = normalize_tool_parameters(
            {
                "anyOf": [
                    {"properties": {"a": {"type": "string"}}, "required": ["a"]},
                    {"properties": {"a": {"type": "string"}, "b": {"type": "integer"}}, "required": ["a", "b"]},
                ]
            }
        )

        assert result["type"] == "object"
        assert set(result["properties"]) == {"a", "b"}
        assert result["required"] == ["a"]

    def test_union_without_common_required_has_none(self):
        result = normalize_tool_parameters(
            {
                "oneOf": [
                    {"properties": {"url": {"type": "string"}}, "required": ["url"]},
                    {"properties": {"path": {"type": "string"}}, "required": ["path"]},
                ]
            }
        )

        assert "required" not in result
        assert set(result["properties"]) == {"url", "path"}

    def test_union_keeps_top_level_required(self):
        result = normalize_tool_parameters(
            {
                "properties": {"mode": {"type": "string"}},
                "required": ["mode"],
                "anyOf": [{"properties": {"a": {}}, "required": ["a"]}, {"required": ["a"]}],
            }
        )

        assert result["required"] == ["mode", "a"]

    def test_unsupported_keywords_are_stripped_recursively(self):
        result = normalize_tool_parameters(
            {
                "$schema": "http://json-schema.org/draft-07/schema#",
                "type": "object",
                "properties": {
                    "kind": {"const": "x", "type": "string", "examples": ["x"]},
                    "nested": {"type": "object", "properties": {"ref": {"$ref": "#/defs/a"}}},
                },
            }
        )

        assert "$schema" not in result
        assert result["properties"]["kind"] == {"type": "string"}
        assert result["properties"]["nested"]["properties"]["ref"] == {}

    def test_strip_unsupported_handles_lists(self):
        assert strip_unsupported([{"const": 1, "type": "integer"}]) == [{"type": "integer"}]
