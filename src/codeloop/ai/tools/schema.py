"""Normalization of tool parameter schemas for cross-provider compatibility.

Completion providers accept different subsets of JSON Schema: some insist on a
top-level ``{"type": "object"}``, some reject references, constants or content
hints. A raw schema is parsed into one of two supported shapes and each shape has
its own normalizer, so the result only uses the features every provider accepts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

UNSUPPORTED_KEYWORDS = frozenset(
    {
        "$schema",
        "$id",
        "$ref",
        "$defs",
        "$comment",
        "definitions",
        "examples",
        "const",
        "contentEncoding",
        "contentMediaType",
    }
)

# Top-level keys carried over besides properties / required.
_PASSTHROUGH_KEYS = ("description", "additionalProperties")


@dataclass(frozen=True)
class ObjectSchema:
    properties: dict[str, Any] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    extras: dict[str, Any] = field(default_factory=dict)
    kind: Literal["object"] = "object"


@dataclass(frozen=True)
class UnionSchema:
    """``anyOf`` / ``oneOf`` over object shapes, plus any properties shared at the top."""

    variants: tuple[ObjectSchema, ...]
    base: ObjectSchema = field(default_factory=ObjectSchema)
    kind: Literal["union"] = "union"


SchemaShape = Union[ObjectSchema, UnionSchema]


def strip_unsupported(value: Any) -> Any:
    """Recursively drop keywords some providers reject."""
    if isinstance(value, dict):
        return {k: strip_unsupported(v) for k, v in value.items() if k not in UNSUPPORTED_KEYWORDS}
    if isinstance(value, list):
        return [strip_unsupported(item) for item in value]
    return value


def _parse_object(raw: dict[str, Any]) -> ObjectSchema:
    properties = raw.get("properties")
    required = raw.get("required")
    return ObjectSchema(
        properties=dict(properties) if isinstance(properties, dict) else {},
        required=tuple(r for r in required if isinstance(r, str)) if isinstance(required, list) else (),
        extras={k: raw[k] for k in _PASSTHROUGH_KEYS if k in raw},
    )


def parse_schema(raw: dict[str, Any] | None) -> SchemaShape:
    if not raw:
        return ObjectSchema()

    for key in ("anyOf", "oneOf"):
        variants = raw.get(key)
        if isinstance(variants, list) and variants:
            return UnionSchema(
                variants=tuple(_parse_object(v) for v in variants if isinstance(v, dict)),
                base=_parse_object(raw),
            )

    return _parse_object(raw)


def _normalize_object(shape: ObjectSchema) -> dict[str, Any]:
    result: dict[str, Any] = {"type": "object", "properties": strip_unsupported(shape.properties)}
    if shape.required:
        result["required"] = list(shape.required)
    result.update(strip_unsupported(shape.extras))
    return result


def _normalize_union(shape: UnionSchema) -> dict[str, Any]:
    properties: dict[str, Any] = dict(shape.base.properties)
    for variant in shape.variants:
        properties.update(variant.properties)

    # Only what every branch requires stays required.
    shared: list[str] = []
    if shape.variants:
        first, *rest = shape.variants
        shared = [r for r in first.required if all(r in v.required for v in rest)]

    required = list(dict.fromkeys([*shape.base.required, *shared]))
    return _normalize_object(
        ObjectSchema(properties=properties, required=tuple(required), extras=shape.base.extras)
    )


def normalize_schema(shape: SchemaShape) -> dict[str, Any]:
    match shape:
        case ObjectSchema():
            return _normalize_object(shape)
        case UnionSchema():
            return _normalize_union(shape)
    raise TypeError(f"Unsupported schema shape: {shape!r}")


def normalize_tool_parameters(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Parse and normalize a raw parameter schema in one step."""
    return normalize_schema(parse_schema(raw))
