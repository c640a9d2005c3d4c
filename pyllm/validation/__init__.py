"""
Output validation module.

Components:
    - validate: Draft 7 check returning a ValidationResult
    - decode_output: parse + validate, raising JSONDecodingError
    - format_validation_errors: readable error listing
"""

from pyllm.validation.validator import (
    SchemaViolation,
    ValidationResult,
    decode_output,
    format_validation_errors,
    validate,
)

__all__ = [
    "validate",
    "decode_output",
    "ValidationResult",
    "SchemaViolation",
    "format_validation_errors",
]
