"""Gemini response schema derived from the pydantic contract.

The schema handed to the model as ``responseSchema`` is generated by
walking the Payslip model, so the two representations cannot drift.
Output uses the OpenAPI subset Gemini accepts: OBJECT, ARRAY, STRING,
NUMBER, INTEGER, BOOLEAN with ``properties``, ``items``, ``required``,
``nullable``, ``enum`` and ``propertyOrdering``. No ``$ref``.
"""

from __future__ import annotations

import enum
import types
from collections.abc import Collection
from decimal import Decimal
from typing import Annotated, Any, Literal, Union, get_args, get_origin

from pydantic import BaseModel

from bustapaga.schemas.payslip import Payslip

_SCALARS: dict[type, str] = {
    str: "STRING",
    bool: "BOOLEAN",  # before int: bool subclasses int
    int: "INTEGER",
    float: "NUMBER",
    Decimal: "NUMBER",
}


def build_response_schema(model: type[BaseModel], exclude: Collection[str] = ()) -> dict[str, Any]:
    """Build a Gemini response schema for a pydantic model (wire aliases).

    Fields with a default or a ``None`` branch are optional; everything
    else is listed under ``required``. Top-level fields named in
    ``exclude`` are left out.
    """
    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, info in model.model_fields.items():
        if name in exclude:
            continue
        wire_name = info.alias or name
        schema, nullable = _annotation_schema(info.annotation)
        if nullable:
            schema["nullable"] = True
        if info.description:
            schema["description"] = info.description
        properties[wire_name] = schema
        if info.is_required() and not nullable:
            required.append(wire_name)

    result: dict[str, Any] = {
        "type": "OBJECT",
        "properties": properties,
        "propertyOrdering": list(properties),
    }
    if required:
        result["required"] = required
    return result


def _annotation_schema(annotation: Any) -> tuple[dict[str, Any], bool]:
    """Return (schema, nullable) for a resolved type annotation."""
    origin = get_origin(annotation)

    if origin is Annotated:
        return _annotation_schema(get_args(annotation)[0])

    if origin in (Union, types.UnionType):
        members = [arg for arg in get_args(annotation) if arg is not type(None)]
        nullable = len(members) < len(get_args(annotation))
        if len(members) != 1:
            msg = f"Unsupported union in response schema: {annotation!r}"
            raise TypeError(msg)
        schema, inner_nullable = _annotation_schema(members[0])
        return schema, nullable or inner_nullable

    if origin is list:
        (item_type,) = get_args(annotation)
        item_schema, _ = _annotation_schema(item_type)
        return {"type": "ARRAY", "items": item_schema}, False

    if origin is Literal:
        return {"type": "STRING", "enum": [str(v) for v in get_args(annotation)]}, False

    if isinstance(annotation, type):
        if issubclass(annotation, BaseModel):
            return build_response_schema(annotation), False
        if issubclass(annotation, enum.Enum):
            return {"type": "STRING", "enum": [str(m.value) for m in annotation]}, False
        for scalar, type_name in _SCALARS.items():
            if issubclass(annotation, scalar):
                return {"type": type_name}, False

    msg = f"Unsupported type in response schema: {annotation!r}"
    raise TypeError(msg)


# Identity is assigned locally, never by the model
PAYSLIP_RESPONSE_SCHEMA: dict[str, Any] = build_response_schema(Payslip, exclude={"id"})
