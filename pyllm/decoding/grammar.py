"""
Constrained JSON Grammar Engine - schema-guided token-by-token generation.

The engine walks the schema tree and produces the JSON text directly in the
model's context. Structural text (braces, brackets, commas, keys, quotes)
is never sampled: it is tokenized and decoded as a literal. Only values are
sampled, and every sample is restricted to the tokens that keep the output
valid for the current field type.

Per-type rules:
    - object: `{`, then `"key":` + value per field, `,` between, `}`
    - enum string: prefix-constrained choice between the allowed values
    - free string: string-safe tokens only, closing quote once the string
      has non-whitespace content, at most 128 tokens
    - integer: optional `-`, digits without leading zeros, at most 19 chars
    - number: integer rules plus a single `.`, at most 32 chars
    - boolean: choice between `true` and `false`
    - array: 1 to 5 items; after each item the model picks `,` or `]`
    - optional field: the model first picks between `null` and the
      value's first token

If sampling fails or generation is stopped, every value is closed with the
cheapest valid completion, so the result always parses.

Usage:
    ```python
    from pyllm.decoding import GenerationSession, JSONGrammarEngine

    engine = JSONGrammarEngine(session)
    text = engine.generate(prompt, {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "age": {"type": "integer"}
        },
        "required": ["name", "age"]
    })
    # '{"name":"Alice","age":31}'
    ```
"""

import json
import logging
from collections import deque
from typing import Deque, FrozenSet, List, Optional, Sequence

from pyllm.decoding.session import GenerationSession
from pyllm.errors import ContextOverflowError
from pyllm.schema.parser import SchemaInput, parse_schema
from pyllm.schema.types import (
    ArrayType,
    BooleanType,
    FieldType,
    IntegerType,
    NumberType,
    ObjectType,
    StringType,
)

logger = logging.getLogger(__name__)


class JSONGrammarEngine:
    """
    Generates JSON text that matches a schema.

    Attributes:
        session: Session controller owning the context
        vocabulary: Token vocabulary of the session
    """

    MAX_STRING_TOKENS = 128
    MAX_INTEGER_CHARS = 19
    MAX_NUMBER_CHARS = 32
    MAX_ARRAY_ITEMS = 5
    REPEAT_GUARD = 3

    def __init__(self, session: GenerationSession):
        self.session = session
        self.vocabulary = session.vocabulary
        self._parts: List[str] = []

    def generate(self, prompt: str, schema: SchemaInput) -> str:
        """
        Generate a JSON object for `schema` after `prompt`.

        The context is reset first; the prompt is decoded as one batch.

        Args:
            prompt: Template-formatted prompt
            schema: JSON text, dict, Pydantic model or parsed ObjectType

        Returns:
            str: Compact JSON text

        Raises:
            SchemaParseError: If the schema cannot be parsed
            ContextOverflowError: If the prompt (or the prompt plus the
                generated text) exceeds the context capacity
            DecodeError: If the engine fails to decode a token
        """
        root = parse_schema(schema)

        if not prompt:
            raise ValueError("Prompt must not be empty")

        self.session.reset_context()
        if not self.session.prepare_context(prompt):
            token_count = len(self.vocabulary.tokenize(prompt, add_bos=True, special=True))
            raise ContextOverflowError(
                f"Prompt of {token_count} tokens does not fit in the context "
                f"(capacity {self.session.capacity})",
                token_count=token_count,
                capacity=self.session.capacity
            )

        logger.info(f"Generating JSON for fields {root.names}")

        self._parts = []
        self._emit(root)
        text = "".join(self._parts)

        logger.info(f"Generated {len(text)} chars in {self.session.tokens_generated} tokens")
        return text

    def _emit(self, field_type: FieldType) -> None:
        if isinstance(field_type, ObjectType):
            self._emit_object(field_type)
        elif isinstance(field_type, ArrayType):
            self._emit_array(field_type)
        elif isinstance(field_type, StringType):
            if field_type.is_enum:
                self._emit_enum(field_type.allowed_values)
            else:
                self._emit_free_string()
        elif isinstance(field_type, IntegerType):
            self._emit_number(fraction=False, cap=self.MAX_INTEGER_CHARS)
        elif isinstance(field_type, NumberType):
            self._emit_number(fraction=True, cap=self.MAX_NUMBER_CHARS)
        elif isinstance(field_type, BooleanType):
            self._emit_choice(["false", "true"], closing=frozenset())
        else:
            raise TypeError(f"Unsupported field type: {field_type!r}")

    # Literal vs sampled output

    def _emit_literal(self, text: str) -> None:
        self.session.decode_tokens(self.vocabulary.literal(text))
        self._parts.append(text)

    def _emit_sampled(self, token: int) -> str:
        piece = self.vocabulary.detokenize(token)
        self.session.decode_tokens([token])
        self._parts.append(piece)
        return piece

    def _sample(self, allowed: FrozenSet[int]) -> Optional[int]:
        return self.session.sample_constrained(allowed)

    # Value emitters

    def _emit_object(self, obj: ObjectType) -> None:
        self._emit_literal("{")

        for index, field in enumerate(obj.fields):
            key = json.dumps(field.name) + ":"
            self._emit_literal(key if index == 0 else "," + key)

            if not field.required and self._choose_null(field.type):
                self._emit_literal("null")
                continue

            self._emit(field.type)

        self._emit_literal("}")

    def _emit_array(self, array: ArrayType) -> None:
        comma = self.vocabulary.tokens_for_text(",")
        close = self.vocabulary.tokens_for_text("]")

        self._emit_literal("[")

        for index in range(self.MAX_ARRAY_ITEMS):
            self._emit(array.items)

            if index == self.MAX_ARRAY_ITEMS - 1:
                break

            token = self._sample(comma | close)
            if token is None or token not in comma:
                break

            self._emit_literal(",")

        self._emit_literal("]")

    def _emit_enum(self, values: Sequence[str]) -> None:
        # Escape values so quotes/backslashes stay valid JSON
        candidates = [json.dumps(v)[1:-1] for v in values]

        self._emit_literal('"')
        self._emit_choice(candidates, closing=self.vocabulary.quote_tokens)
        self._emit_literal('"')

    def _emit_choice(self, candidates: Sequence[str], closing: FrozenSet[int]) -> str:
        """
        Emit exactly one of `candidates` by prefix-constrained sampling.

        `closing` tokens end the choice early once a complete candidate has
        been emitted (the caller writes the closing literal itself).
        """
        emitted = ""
        remaining = list(dict.fromkeys(candidates))

        while len(remaining) > 1:
            allowed = set()
            for candidate in remaining:
                rest = candidate[len(emitted):]
                if rest:
                    allowed |= self.vocabulary.prefix_tokens(rest)
            if emitted in remaining:
                allowed |= closing

            token = self._sample(frozenset(allowed))
            if token is None or token in closing:
                break

            emitted += self._emit_sampled(token)
            remaining = [c for c in remaining if c.startswith(emitted)]

        if len(remaining) == 1 or emitted not in remaining:
            target = remaining[0]
        else:
            target = emitted

        rest = target[len(emitted):]
        if rest:
            self._emit_literal(rest)

        return target

    def _emit_free_string(self) -> None:
        quote = self.vocabulary.quote_tokens
        start = self.vocabulary.string_start_tokens
        body = self.vocabulary.string_tokens | quote

        self._emit_literal('"')

        has_content = False
        recent: Deque[int] = deque(maxlen=self.REPEAT_GUARD)

        for _ in range(self.MAX_STRING_TOKENS):
            token = self._sample(body if has_content else start)
            if token is None or token in quote:
                break

            piece = self._emit_sampled(token)
            if piece.strip():
                has_content = True

            recent.append(token)
            if len(recent) == self.REPEAT_GUARD and len(set(recent)) == 1:
                logger.debug(f"Stopping string after repeated token {token}")
                break

        self._emit_literal('"')

    def _emit_number(self, fraction: bool, cap: int) -> None:
        digits = self.vocabulary.digit_tokens
        minus = self.vocabulary.tokens_for_text("-")
        dot = self.vocabulary.tokens_for_text(".") if fraction else frozenset()
        terminators = self._terminators()

        text = ""
        while len(text) < cap:
            room = cap - len(text)
            body = text.lstrip("-")

            if body == "":
                # First digit: a lone 0 or a non-zero lead
                allowed = {t for t, d in digits.items() if len(d) <= room and (d == "0" or d[0] != "0")}
                if text == "":
                    allowed |= minus
            elif body == "0":
                if not fraction:
                    break
                allowed = set(terminators)
                if room >= 2:
                    allowed |= dot
            elif text.endswith("."):
                allowed = {t for t, d in digits.items() if len(d) <= room}
            else:
                allowed = {t for t, d in digits.items() if len(d) <= room} | terminators
                if "." not in text and room >= 2:
                    allowed |= dot

            token = self._sample(frozenset(allowed))
            if token is None or token in terminators:
                break

            text += self._emit_sampled(token)

        if text in ("", "-") or text.endswith("."):
            self._emit_literal("0")

    def _choose_null(self, field_type: FieldType) -> bool:
        null = self.vocabulary.prefix_tokens("null")
        start = self._start_tokens(field_type)

        token = self._sample(start | null)
        if token is None:
            return True
        return token in null and token not in start

    def _start_tokens(self, field_type: FieldType) -> FrozenSet[int]:
        vocab = self.vocabulary
        if isinstance(field_type, StringType):
            return vocab.quote_tokens
        if isinstance(field_type, (IntegerType, NumberType)):
            return frozenset(vocab.digit_tokens) | vocab.tokens_for_text("-")
        if isinstance(field_type, BooleanType):
            return vocab.prefix_tokens("true") | vocab.prefix_tokens("false")
        if isinstance(field_type, ObjectType):
            return vocab.tokens_for_text("{")
        if isinstance(field_type, ArrayType):
            return vocab.tokens_for_text("[")
        return frozenset()

    def _terminators(self) -> FrozenSet[int]:
        vocab = self.vocabulary
        return vocab.tokens_for_text(",") | vocab.tokens_for_text("}") | vocab.tokens_for_text("]")
