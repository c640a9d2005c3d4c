"""
JSON Schema validation of generated output.

Constrained generation should always produce valid JSON, but the result is
still checked with jsonschema before it is handed back: a failure here means
the grammar and the schema disagree, and the caller gets a typed error with
the raw text and every violation instead of a half-valid value.

Usage:
    ```python
    from pyllm.validation import validate

    schema = {"type": "object", "properties": {"age": {"type": "integer"}}}

    result = validate('{"age": 25}', schema)
    if not result.is_valid:
        for violation in result.errors:
            print(f"{violation.path}: {violation.message}")
    ```
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft7Validator

from pyllm.errors import JSONDecodingError
from pyllm.schema.types import ObjectType

logger = logging.getLogger(__name__)


@dataclass
class SchemaViolation:
    """
    A single validation failure.

    Attributes:
        path: JSON path to the failing value (e.g. ".user.age")
        message: Human-readable message from the validator
        validator: Keyword that failed (e.g. "type", "enum", "required")
        expected: The keyword's value in the schema
        actual: The value found
    """
    path: str
    message: str
    validator: str
    expected: Any
    actual: Any


@dataclass
class ValidationResult:
    """
    Attributes:
        is_valid: Whether the output parsed and matched the schema
        errors: Violations (empty if valid)
        raw_output: Text that was checked
        parsed_output: Decoded JSON when valid, else None
    """
    is_valid: bool
    errors: List[SchemaViolation]
    raw_output: str
    parsed_output: Optional[Any]


def validate(output: str, schema: Union[Dict[str, Any], ObjectType]) -> ValidationResult:
    """
    Validate JSON text against a Draft 7 schema.

    Args:
        output: JSON text
        schema: JSON Schema dict, or a parsed ObjectType

    Returns:
        ValidationResult
    """
    if isinstance(schema, ObjectType):
        schema = schema.to_json_schema()

    try:
        parsed = json.loads(output)
    except json.JSONDecodeError as e:
        return ValidationResult(
            is_valid=False,
            errors=[
                SchemaViolation(
                    path="root",
                    message=f"Invalid JSON: {e.msg}",
                    validator="json",
                    expected="valid JSON",
                    actual=f"parse error at position {e.pos}"
                )
            ],
            raw_output=output,
            parsed_output=None
        )

    validator = Draft7Validator(schema)
    errors = [_convert_error(error, parsed) for error in validator.iter_errors(parsed)]

    if errors:
        logger.debug(f"Output failed validation with {len(errors)} error(s)")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        raw_output=output,
        parsed_output=parsed if not errors else None
    )


def decode_output(output: str, root: ObjectType) -> Any:
    """
    Parse and validate generated JSON.

    Returns:
        The decoded value

    Raises:
        JSONDecodingError: If the text does not parse or match `root`
    """
    schema = root.to_json_schema()
    result = validate(output, schema)

    if not result.is_valid:
        logger.error(f"Generated output failed validation:\n{format_validation_errors(result.errors)}")
        raise JSONDecodingError(
            f"Generated output does not match the schema ({len(result.errors)} error(s))",
            raw_text=output,
            schema=schema,
            errors=result.errors
        )

    return result.parsed_output


def _convert_error(error: Any, data: Any) -> SchemaViolation:
    path = "." + ".".join(str(p) for p in error.path) if error.path else "root"

    actual = data
    for key in error.path:
        if isinstance(actual, dict):
            actual = actual.get(key, "MISSING")
        elif isinstance(actual, list):
            try:
                actual = actual[int(key)]
            except (IndexError, ValueError):
                actual = "INVALID_INDEX"
        else:
            actual = "UNKNOWN"

    expected = error.schema.get(error.validator, "see schema") if isinstance(error.schema, dict) else "see schema"

    return SchemaViolation(
        path=path,
        message=error.message,
        validator=error.validator,
        expected=expected,
        actual=actual
    )


def format_validation_errors(errors: List[SchemaViolation]) -> str:
    """
    Format violations as a numbered list.

    Example:
        ```
        Validation failed with 1 error(s):

          1. At .age: 'x' is not of type 'integer'
             Expected: integer
             Got: x
        ```
    """
    if not errors:
        return "No validation errors"

    lines = [f"Validation failed with {len(errors)} error(s):"]

    for i, error in enumerate(errors, 1):
        lines.append(f"\n  {i}. At {error.path}: {error.message}")
        lines.append(f"     Expected: {error.expected}")
        lines.append(f"     Got: {error.actual}")

    return "\n".join(lines)
