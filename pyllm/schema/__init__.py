"""
Schema parsing module.

Turns JSON Schema text, dicts or Pydantic models into the field-type tree
the grammar engine walks.

Components:
    - types: FieldType hierarchy (StringType, IntegerType, NumberType,
      BooleanType, ObjectType, ArrayType) and Field
    - parser: parse_schema() entry point
    - pydantic_adapter: BaseModel -> inlined JSON Schema
"""

from pyllm.schema.parser import parse_schema
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

__all__ = [
    "parse_schema",
    "FieldType",
    "Field",
    "StringType",
    "IntegerType",
    "NumberType",
    "BooleanType",
    "ObjectType",
    "ArrayType",
]
