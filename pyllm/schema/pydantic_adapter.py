"""
Pydantic model support.

Converts a BaseModel class to a self-contained JSON Schema. Pydantic puts
nested models under `$defs` and points at them with `$ref`; the grammar
engine needs every definition inlined, so references are resolved here.

Usage:
    ```python
    from pydantic import BaseModel
    from pyllm.schema.pydantic_adapter import pydantic_to_schema

    class Address(BaseModel):
        city: str

    class User(BaseModel):
        name: str
        address: Address

    schema = pydantic_to_schema(User)
    schema["properties"]["address"]["properties"]["city"]  # {"type": "string", ...}
    ```
"""

from typing import Any, Dict, Tuple

from pydantic import BaseModel

from pyllm.errors import SchemaParseError


def is_pydantic_model(obj: Any) -> bool:
    return isinstance(obj, type) and issubclass(obj, BaseModel)


def pydantic_to_schema(model: type) -> Dict[str, Any]:
    """
    JSON Schema for a Pydantic model with all `$ref`s inlined.

    Raises:
        SchemaParseError: If the model is recursive
    """
    schema = model.model_json_schema()
    definitions = schema.get("$defs", {})
    return _inline(schema, definitions, ())


def _inline(node: Any, definitions: Dict[str, Any], stack: Tuple[str, ...]) -> Any:
    if isinstance(node, list):
        return [_inline(item, definitions, stack) for item in node]

    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        if name in stack:
            raise SchemaParseError(f"Recursive model reference: {' -> '.join(stack + (name,))}")
        if name not in definitions:
            raise SchemaParseError(f"Unresolved reference: {node['$ref']}")
        return _inline(definitions[name], definitions, stack + (name,))

    return {
        key: _inline(value, definitions, stack)
        for key, value in node.items()
        if key != "$defs"
    }
