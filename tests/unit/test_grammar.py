"""
Unit tests for the JSON grammar engine.
"""

import json

import pytest

from pyllm.decoding import GenerationSession, JSONGrammarEngine, TokenVocabulary
from pyllm.errors import ContextOverflowError, DecodeError, SchemaParseError


def run(make_engine, greedy, script, schema, prompt="Describe", **engine_kwargs):
    engine = make_engine(scripts=[script], **engine_kwargs)
    session = GenerationSession(engine, TokenVocabulary(engine), greedy)
    return JSONGrammarEngine(session).generate(prompt, schema), session


def obj(properties, required=None):
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties) if required is None else required
    }


class TestObjects:
    """Test object layout and field order."""

    def test_name_and_age(self, make_engine, greedy):
        """Test the basic two-field object."""
        schema = obj({"name": {"type": "string"}, "age": {"type": "integer"}})

        text, _ = run(make_engine, greedy, '{"name":"Alice","age":42}', schema)

        assert text == '{"name":"Alice","age":42}'
        assert json.loads(text) == {"name": "Alice", "age": 42}

    def test_keys_follow_declaration_order(self, make_engine, greedy):
        """Test that keys are emitted in declaration order even if the model prefers another."""
        schema = obj({"age": {"type": "integer"}, "name": {"type": "string"}})

        text, _ = run(make_engine, greedy, '{"name":"Bob","age":12}', schema)

        assert list(json.loads(text)) == ["age", "name"]

    def test_ordered_keys(self, make_engine, greedy):
        """Test that ordered_keys overrides declaration order."""
        schema = obj({"name": {"type": "string"}, "age": {"type": "integer"}})
        schema["ordered_keys"] = ["age", "name"]

        text, _ = run(make_engine, greedy, '{"age":42,"name":"Bob"}', schema)

        assert text == '{"age":42,"name":"Bob"}'

    def test_nested_object(self, make_engine, greedy):
        """Test nested objects."""
        schema = obj({
            "user": obj({"name": {"type": "string"}}),
            "ok": {"type": "boolean"}
        })

        text, _ = run(make_engine, greedy, '{"user":{"name":"Bob"},"ok":true}', schema)

        assert json.loads(text) == {"user": {"name": "Bob"}, "ok": True}

    def test_structure_is_decoded_into_context(self, make_engine, greedy):
        """Test that literal structure is part of the model's context."""
        schema = obj({"name": {"type": "string"}})

        text, session = run(make_engine, greedy, '{"name":"Bob"}', schema)

        assert session.engine.generated_text() == text
        assert session.tokens_generated == len(session.engine.generated)


class TestStrings:
    """Test enum and free-text strings."""

    def test_enum_follows_model(self, make_engine, greedy):
        """Test that the model's preferred enum value is chosen."""
        schema = obj({"color": {"type": "string", "enum": ["red", "green", "blue"]}})

        text, _ = run(make_engine, greedy, '{"color":"green"}', schema)

        assert json.loads(text) == {"color": "green"}

    def test_enum_shared_prefix(self, make_engine, greedy):
        """Test that values sharing a prefix are told apart."""
        schema = obj({"color": {"type": "string", "enum": ["grey", "green"]}})

        text, _ = run(make_engine, greedy, '{"color":"green"}', schema)

        assert json.loads(text)["color"] == "green"

    def test_enum_never_leaves_allowed_values(self, make_engine, greedy):
        """Test that an out-of-enum preference still yields an allowed value."""
        schema = obj({"color": {"type": "string", "enum": ["red", "green", "blue"]}})

        text, _ = run(make_engine, greedy, '{"color":"purple"}', schema)

        assert json.loads(text)["color"] in ("red", "green", "blue")

    def test_enum_value_that_prefixes_another(self, make_engine, greedy):
        """Test choosing the shorter of two values where one prefixes the other."""
        schema = obj({"size": {"type": "string", "enum": ["gr", "green"]}})

        text, _ = run(make_engine, greedy, '{"size":"gr"}', schema)

        assert json.loads(text)["size"] == "gr"

    def test_free_string(self, make_engine, greedy):
        """Test free text generation ending at the quote."""
        schema = obj({"text": {"type": "string"}})

        text, _ = run(make_engine, greedy, '{"text":"Alice the answer"}', schema)

        assert json.loads(text) == {"text": "Alice the answer"}

    def test_free_string_never_starts_blank(self, make_engine, greedy):
        """Test that a string never starts with whitespace or closes empty."""
        schema = obj({"text": {"type": "string"}})

        text, _ = run(make_engine, greedy, '{"text":""}', schema)

        value = json.loads(text)["text"]
        assert value
        assert not value[0].isspace()

    def test_free_string_repeat_guard(self, make_engine, greedy):
        """Test that three identical tokens in a row end the string."""
        schema = obj({"text": {"type": "string"}})

        text, _ = run(make_engine, greedy, '{"text":"aaaaaaaaaa"}', schema)

        assert json.loads(text) == {"text": "aaa"}

    def test_free_string_escapes_nothing(self, make_engine, greedy):
        """Test that quotes and backslashes never appear inside a string."""
        schema = obj({"text": {"type": "string"}})

        text, _ = run(make_engine, greedy, '{"text":"a\\\\b"}', schema)

        value = json.loads(text)["text"]
        assert "\\" not in value
        assert '"' not in value


class TestNumbers:
    """Test integer and number generation."""

    def test_negative_number_with_fraction(self, make_engine, greedy):
        """Test a negative decimal number."""
        schema = obj({"score": {"type": "number"}})

        text, _ = run(make_engine, greedy, '{"score":-3.25}', schema)

        assert json.loads(text) == {"score": -3.25}

    def test_integer_without_leading_zeros(self, make_engine, greedy):
        """Test that a leading zero ends an integer."""
        schema = obj({"n": {"type": "integer"}})

        text, _ = run(make_engine, greedy, '{"n":007}', schema)

        assert text == '{"n":0}'

    def test_integer_rejects_fraction(self, make_engine, greedy):
        """Test that integers never contain a dot."""
        schema = obj({"n": {"type": "integer"}})

        text, _ = run(make_engine, greedy, '{"n":12.5}', schema)

        assert "." not in text
        assert isinstance(json.loads(text)["n"], int)

    def test_integer_length_cap(self, make_engine, greedy):
        """Test that integers stop at 19 characters."""
        schema = obj({"n": {"type": "integer"}})

        text, _ = run(make_engine, greedy, '{"n":' + "9" * 30 + "}", schema)

        assert json.loads(text)["n"] == int("9" * 19)

    def test_number_dot_needs_room_for_a_digit(self, make_engine, greedy):
        """Test that a fraction never starts in the last character of a number."""
        schema = obj({"x": {"type": "number"}})

        text, _ = run(make_engine, greedy, '{"x":' + "1" * 31 + ".5}", schema)

        value = text[len('{"x":'):-1]
        assert len(value) <= 32
        assert json.loads(text)["x"] == int("1" * 31)

    def test_lone_minus_is_completed(self, make_engine, greedy):
        """Test that a stopped number is closed with a valid completion."""
        schema = obj({"n": {"type": "integer"}})
        stops = {}

        def stop_at_first_sample(engine):
            # The sample in progress still completes
            stops["session"].stop()

        engine = make_engine(scripts=['{"n":-5}'], on_logits=stop_at_first_sample)
        session = GenerationSession(engine, TokenVocabulary(engine), greedy)
        stops["session"] = session

        text = JSONGrammarEngine(session).generate("Describe", schema)

        assert text == '{"n":-0}'
        assert json.loads(text) == {"n": 0}


class TestArraysAndOptionals:
    """Test arrays, booleans and nullable fields."""

    def test_array_stops_at_close(self, make_engine, greedy):
        """Test that the model can close an array early."""
        schema = obj({"tags": {"type": "array", "items": {"type": "string"}}})

        text, _ = run(make_engine, greedy, '{"tags":["a","b"]}', schema)

        assert json.loads(text) == {"tags": ["a", "b"]}

    def test_array_item_cap(self, make_engine, greedy):
        """Test that arrays hold at most five items."""
        schema = obj({"tags": {"type": "array", "items": {"type": "string"}}})

        text, _ = run(make_engine, greedy, '{"tags":["a","b","c","d","e","f","g"]}', schema)

        assert json.loads(text) == {"tags": ["a", "b", "c", "d", "e"]}

    def test_array_of_integers(self, make_engine, greedy):
        """Test integer items terminated by commas."""
        schema = obj({"xs": {"type": "array", "items": {"type": "integer"}}})

        text, _ = run(make_engine, greedy, '{"xs":[1,42,7]}', schema)

        assert json.loads(text) == {"xs": [1, 42, 7]}

    def test_boolean(self, make_engine, greedy):
        """Test both boolean values."""
        schema = obj({"ok": {"type": "boolean"}})

        yes, _ = run(make_engine, greedy, '{"ok":true}', schema)
        no, _ = run(make_engine, greedy, '{"ok":false}', schema)

        assert json.loads(yes) == {"ok": True}
        assert json.loads(no) == {"ok": False}

    def test_optional_null(self, make_engine, greedy):
        """Test that an optional field may be null."""
        schema = obj(
            {"name": {"type": "string"}, "nickname": {"type": "string"}},
            required=["name"]
        )

        text, _ = run(make_engine, greedy, '{"name":"Bob","nickname":null}', schema)

        assert json.loads(text) == {"name": "Bob", "nickname": None}

    def test_optional_present(self, make_engine, greedy):
        """Test that an optional field may hold a value."""
        schema = obj(
            {"name": {"type": "string"}, "nickname": {"type": "string"}},
            required=["name"]
        )

        text, _ = run(make_engine, greedy, '{"name":"Bob","nickname":"Al"}', schema)

        assert json.loads(text) == {"name": "Bob", "nickname": "Al"}

    def test_required_field_is_never_null(self, make_engine, greedy):
        """Test that required fields never get null."""
        schema = obj({"n": {"type": "integer"}})

        text, _ = run(make_engine, greedy, '{"n":null}', schema)

        assert isinstance(json.loads(text)["n"], int)


class TestErrors:
    """Test error reporting."""

    def test_prompt_too_long(self, make_engine, greedy):
        """Test that an oversized prompt raises ContextOverflowError."""
        schema = obj({"name": {"type": "string"}})

        with pytest.raises(ContextOverflowError) as exc_info:
            run(make_engine, greedy, '{"name":"Bob"}', schema, prompt="x" * 40, n_ctx=16)

        assert exc_info.value.capacity == 16
        assert exc_info.value.token_count == 41

    def test_output_overflow(self, make_engine, greedy):
        """Test that running out of context mid-output raises ContextOverflowError."""
        schema = obj({"name": {"type": "string"}})

        with pytest.raises(ContextOverflowError):
            run(make_engine, greedy, '{"name":"Bob"}', schema, prompt="hi", n_ctx=8)

    def test_decode_failure(self, make_engine, greedy):
        """Test that an engine failure raises DecodeError."""
        schema = obj({"name": {"type": "string"}})

        with pytest.raises(DecodeError):
            run(make_engine, greedy, '{"name":"Bob"}', schema, fail_decode_at=3)

    def test_bad_schema(self, make_engine, greedy):
        """Test that an unparseable schema raises SchemaParseError."""
        with pytest.raises(SchemaParseError):
            run(make_engine, greedy, "{}", "not json")

    def test_empty_prompt(self, make_engine, greedy):
        """Test that an empty prompt is rejected."""
        schema = obj({"name": {"type": "string"}})

        with pytest.raises(ValueError):
            run(make_engine, greedy, "{}", schema, prompt="")
