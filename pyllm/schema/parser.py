"""
JSON Schema parser - converts schema input to the field-type tree.

Accepted input:
    - JSON text (str or bytes)
    - a dict
    - a Pydantic BaseModel class (converted to JSON Schema internally)

Supported subset:
    - `type`: string, integer, number, boolean, object, array
    - `enum` (strings) and `const` on string fields
    - nested `properties` / `required`, array `items`
    - `ordered_keys`: explicit field order for an object
    - nullable unions (`anyOf: [X, {"type": "null"}]`, `type: [X, "null"]`)

Usage:
    ```python
    from pyllm.schema import parse_schema

    root = parse_schema('''
    {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "age": {"type": "integer"}
        },
        "required": ["name", "age"]
    }
    ''')
    root.names  # ['name', 'age']
    ```
"""

import json
import logging
from typing import Any, Dict, List, Union

from pyllm.errors import SchemaParseError
from pyllm.schema.types import (
    ArrayType,
    BooleanType,
    Field,
    FieldType,
    IntegerType,
    NumberType,
    ObjectType,
    StringType,
)

logger = logging.getLogger(__name__)

SchemaInput = Union[str, bytes, Dict[str, Any], type]


def parse_schema(schema: SchemaInput) -> ObjectType:
    """
    Parse schema input into an ObjectType tree.

    Field order is `ordered_keys` when present (remaining properties follow
    in declaration order), otherwise the declaration order of `properties`.

    Args:
        schema: JSON text, dict, or Pydantic model class

    Returns:
        ObjectType: Root of the tree

    Raises:
        SchemaParseError: If the input is not valid JSON, has no
            `properties` object, or uses an unsupported construct

    Example:
        ```python
        from pydantic import BaseModel

        class User(BaseModel):
            name: str
            age: int

        root = parse_schema(User)
        ```
    """
    if isinstance(schema, ObjectType):
        return schema

    if isinstance(schema, type):
        from pyllm.schema.pydantic_adapter import is_pydantic_model, pydantic_to_schema
        if not is_pydantic_model(schema):
            raise SchemaParseError(f"{schema.__name__} is not a Pydantic model")
        schema = pydantic_to_schema(schema)

    if isinstance(schema, (str, bytes)):
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as e:
            raise SchemaParseError(f"Schema is not valid JSON: {e}") from e

    if not isinstance(schema, dict):
        raise SchemaParseError(f"Schema must be a JSON object, got {type(schema).__name__}")

    if not isinstance(schema.get("properties"), dict):
        raise SchemaParseError("Schema has no 'properties' object")

    root = _parse_object(schema, path="$")
    logger.debug(f"Parsed schema with fields {root.names}")
    return root


def _parse_field_type(schema: Any, path: str) -> FieldType:
    if not isinstance(schema, dict):
        raise SchemaParseError(f"{path}: property schema must be an object")

    if "$ref" in schema:
        raise SchemaParseError(f"{path}: $ref is not supported - use inline schemas")

    # Pydantic wraps annotated references as allOf: [{...}]
    all_of = schema.get("allOf")
    if isinstance(all_of, list) and len(all_of) == 1:
        return _parse_field_type(all_of[0], path)

    for key in ("anyOf", "oneOf"):
        if key in schema:
            return _parse_field_type(_pick_non_null(schema[key], path), path)

    if "const" in schema:
        return _parse_enum([schema["const"]], path)

    if "enum" in schema:
        return _parse_enum(schema["enum"], path)

    schema_type = schema.get("type")

    if isinstance(schema_type, list):
        candidates = [t for t in schema_type if t != "null"]
        if not candidates:
            raise SchemaParseError(f"{path}: null-only types are not supported")
        schema_type = candidates[0]

    if schema_type is None:
        if "properties" in schema:
            schema_type = "object"
        elif "items" in schema:
            schema_type = "array"
        else:
            raise SchemaParseError(f"{path}: missing 'type'")

    if schema_type == "string":
        return StringType()
    elif schema_type == "integer":
        return IntegerType()
    elif schema_type == "number":
        return NumberType()
    elif schema_type == "boolean":
        return BooleanType()
    elif schema_type == "object":
        return _parse_object(schema, path)
    elif schema_type == "array":
        if "items" not in schema:
            raise SchemaParseError(f"{path}: array requires 'items'")
        return ArrayType(items=_parse_field_type(schema["items"], f"{path}[]"))
    else:
        raise SchemaParseError(f"{path}: unsupported type {schema_type!r}")


def _parse_object(schema: Dict[str, Any], path: str) -> ObjectType:
    properties = schema.get("properties", {})
    if not isinstance(properties, dict):
        raise SchemaParseError(f"{path}: 'properties' must be an object")

    required = set(schema.get("required", []))
    unknown = required - set(properties)
    if unknown:
        logger.warning(f"{path}: required fields without properties ignored: {sorted(unknown)}")

    fields = []
    for name in _field_order(schema, properties, path):
        field_type = _parse_field_type(properties[name], f"{path}.{name}")
        fields.append(Field(name=name, type=field_type, required=name in required))

    return ObjectType(fields=tuple(fields))


def _field_order(schema: Dict[str, Any], properties: Dict[str, Any], path: str) -> List[str]:
    ordered = schema.get("ordered_keys")
    if ordered is None:
        return list(properties)

    if not isinstance(ordered, list) or not all(isinstance(k, str) for k in ordered):
        raise SchemaParseError(f"{path}: 'ordered_keys' must be a list of strings")

    missing = [k for k in ordered if k not in properties]
    if missing:
        raise SchemaParseError(f"{path}: 'ordered_keys' names unknown properties {missing}")

    seen = set(ordered)
    return list(dict.fromkeys(ordered)) + [k for k in properties if k not in seen]


def _parse_enum(values: Any, path: str) -> StringType:
    if not isinstance(values, list) or not values:
        raise SchemaParseError(f"{path}: 'enum' must be a non-empty list")
    if not all(isinstance(v, str) for v in values):
        raise SchemaParseError(f"{path}: only string enums are supported")
    return StringType(allowed_values=tuple(dict.fromkeys(values)))


def _pick_non_null(options: Any, path: str) -> Dict[str, Any]:
    if not isinstance(options, list):
        raise SchemaParseError(f"{path}: anyOf/oneOf must be a list")

    candidates = [o for o in options if not (isinstance(o, dict) and o.get("type") == "null")]
    if not candidates:
        raise SchemaParseError(f"{path}: union has no non-null option")

    if len(candidates) > 1:
        logger.warning(f"{path}: union of {len(candidates)} types, using the first")

    return candidates[0]
