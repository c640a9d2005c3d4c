"""
Typed errors raised by pyllm.

Every error surfaces to the direct caller. None of them is retried
internally except the free-form chat path, which recovers from a
ContextOverflowError by dropping the oldest history turn.

Hierarchy:
    LLMError
    ├── SchemaParseError: schema text is malformed or incomplete
    ├── ContextOverflowError: prompt (+ generated text) exceeds capacity
    ├── DecodeError: the engine failed to evaluate a batch
    ├── JSONDecodingError: structured output failed to parse/validate
    ├── EmbeddingsError: empty input or extraction failure
    └── LLMBusyError: another generation is already in flight
"""

from typing import Any, List, Optional


class LLMError(Exception):
    """Base class for all pyllm errors."""


class SchemaParseError(LLMError, ValueError):
    """Schema is not valid JSON or lacks a usable `properties` object."""


class ContextOverflowError(LLMError):
    """
    Prompt or prompt plus generated tokens does not fit in the context.

    Attributes:
        token_count: Number of tokens that were requested
        capacity: Maximum number of tokens the context holds
    """

    def __init__(
        self,
        message: str,
        token_count: Optional[int] = None,
        capacity: Optional[int] = None
    ):
        super().__init__(message)
        self.token_count = token_count
        self.capacity = capacity


class DecodeError(LLMError):
    """The engine failed to decode a batch. Fatal for the current call."""


class JSONDecodingError(LLMError):
    """
    Generated text did not decode into the target type.

    This should never happen with a correct grammar; the raw text and
    schema are kept so the failure can be diagnosed.

    Attributes:
        raw_text: The generated text
        schema: JSON Schema the text was checked against
        errors: Validation errors (if any were collected)
    """

    def __init__(
        self,
        message: str,
        raw_text: str,
        schema: Any,
        errors: Optional[List[Any]] = None
    ):
        super().__init__(message)
        self.raw_text = raw_text
        self.schema = schema
        self.errors = errors or []

    def __str__(self) -> str:
        return f"{self.args[0]} (raw output: {self.raw_text!r})"


class EmbeddingsError(LLMError):
    """Embeddings could not be extracted."""


class LLMBusyError(LLMError):
    """A generation is already running on this LLM instance."""
