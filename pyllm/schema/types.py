"""
Schema AST for constrained JSON generation.

A schema is parsed once per generation call into a small tree of field
types. The grammar engine walks the tree and emits one value per node.

Type Hierarchy:
    FieldType (abstract)
    ├── StringType: free text, or one of `allowed_values`
    ├── IntegerType
    ├── NumberType
    ├── BooleanType
    ├── ObjectType: ordered fields
    └── ArrayType: homogeneous items

Each type knows how to render itself back to a JSON Schema for validating
the generated text.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


class FieldType(ABC):
    """Abstract base class for all field types."""

    @abstractmethod
    def to_json_schema(self) -> Dict[str, Any]:
        """JSON Schema that every value generated for this type satisfies."""


@dataclass(frozen=True)
class StringType(FieldType):
    """
    String value.

    Attributes:
        allowed_values: Enum members; None for free text
    """
    allowed_values: Optional[Tuple[str, ...]] = None

    @property
    def is_enum(self) -> bool:
        return bool(self.allowed_values)

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "string"}
        if self.allowed_values:
            schema["enum"] = list(self.allowed_values)
        return schema


@dataclass(frozen=True)
class IntegerType(FieldType):
    def to_json_schema(self) -> Dict[str, Any]:
        return {"type": "integer"}


@dataclass(frozen=True)
class NumberType(FieldType):
    def to_json_schema(self) -> Dict[str, Any]:
        return {"type": "number"}


@dataclass(frozen=True)
class BooleanType(FieldType):
    def to_json_schema(self) -> Dict[str, Any]:
        return {"type": "boolean"}


@dataclass(frozen=True)
class Field:
    """
    Named member of an object.

    Attributes:
        name: Property name
        type: Value type
        required: Non-required fields may be generated as null
    """
    name: str
    type: FieldType
    required: bool = True


@dataclass(frozen=True)
class ObjectType(FieldType):
    """
    Object with fields in generation order.

    Example:
        ```python
        person = ObjectType(fields=(
            Field("name", StringType()),
            Field("age", IntegerType()),
            Field("nickname", StringType(), required=False),
        ))
        ```
    """
    fields: Tuple[Field, ...] = ()

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def required_names(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    def field(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def to_json_schema(self) -> Dict[str, Any]:
        properties = {}
        for f in self.fields:
            sub = f.type.to_json_schema()
            if not f.required:
                # Optional fields may be emitted as null
                sub = {"anyOf": [sub, {"type": "null"}]}
            properties[f.name] = sub

        return {
            "type": "object",
            "properties": properties,
            "required": self.required_names,
        }

    def drop_null_optionals(self, value: Any) -> Any:
        """
        Remove null values of optional fields, recursively.

        Lets typed models with non-nullable defaults accept the output.
        """
        if not isinstance(value, dict):
            return value

        result = {}
        for key, item in value.items():
            f = self.field(key)
            if f is None:
                result[key] = item
                continue
            if item is None and not f.required:
                continue
            result[key] = _drop_nulls(f.type, item)
        return result


@dataclass(frozen=True)
class ArrayType(FieldType):
    items: FieldType

    def to_json_schema(self) -> Dict[str, Any]:
        return {"type": "array", "items": self.items.to_json_schema()}


def _drop_nulls(field_type: FieldType, value: Any) -> Any:
    if isinstance(field_type, ObjectType):
        return field_type.drop_null_optionals(value)
    if isinstance(field_type, ArrayType) and isinstance(value, list):
        return [_drop_nulls(field_type.items, item) for item in value]
    return value
