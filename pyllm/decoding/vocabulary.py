"""
Token Vocabulary - tokenize/detokenize with caching and token-class sets.

The grammar engine needs to know, for every token in the vocabulary, what
text it stands for: whether it can appear inside a JSON string, whether it
is made only of digits, whether it is the closing quote, and so on. This
module decodes each token once, caches the result, and builds those token
classes lazily on first use.

Token classes:
    - string tokens: safe inside a JSON string (no quote, no backslash,
      no control characters)
    - digit tokens: one or more ASCII digits
    - whitespace tokens: non-empty and made only of whitespace
    - protected tokens: whitespace tokens, the quote token and EOS

Usage:
    ```python
    from pyllm.decoding import TokenVocabulary

    vocab = TokenVocabulary(engine)

    vocab.detokenize(1234)            # cached after the first call
    vocab.tokens_for_text('"')        # every token that decodes to a quote
    vocab.prefix_tokens("green")      # tokens for "g", "gr", "green", ...

    decoder = vocab.stream_decoder(special=True)
    text = decoder.feed(token)        # multi-byte UTF-8 safe
    ```
"""

import codecs
import logging
import string
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pyllm.backends.base import Engine

logger = logging.getLogger(__name__)

# Punctuation allowed inside generated JSON strings
STRING_PUNCTUATION = frozenset(string.punctuation) - {'"', '\\'}


def is_string_safe(text: str) -> bool:
    """True if every character may appear unescaped inside a JSON string."""
    if not text or '\ufffd' in text:
        return False
    return all(
        c == ' ' or c.isalnum() or c in STRING_PUNCTUATION
        for c in text
    )


class StreamDecoder:
    """
    Incremental token-to-text decoder.

    Byte-level vocabularies split multi-byte characters across tokens. The
    decoder buffers incomplete sequences and only returns whole characters.
    """

    def __init__(self, vocabulary: "TokenVocabulary", special: bool = False):
        self._vocabulary = vocabulary
        self._special = special
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, token: int) -> str:
        return self._decoder.decode(self._vocabulary.piece(token, self._special))

    def flush(self) -> str:
        return self._decoder.decode(b"", final=True)


class TokenVocabulary:
    """
    Cached view of an engine's vocabulary.

    Caches are owned by the instance and dropped with it. All token-class
    sets are computed in a single pass over the vocabulary the first time
    any of them is requested.

    Attributes:
        engine: Engine whose tokenizer is wrapped
        size: Number of tokens (length of the logits vector)
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.size = engine.n_vocab

        self._pieces: Dict[Tuple[int, bool], bytes] = {}
        self._texts: Dict[Tuple[int, bool], str] = {}
        self._literals: Dict[str, Tuple[int, ...]] = {}

        # Filled by _scan()
        self._text_index: Optional[Dict[str, List[int]]] = None
        self._string_tokens: FrozenSet[int] = frozenset()
        self._string_start_tokens: FrozenSet[int] = frozenset()
        self._digit_tokens: Dict[int, str] = {}
        self._whitespace_tokens: FrozenSet[int] = frozenset()

        logger.debug(f"TokenVocabulary created for {self.size} tokens")

    @property
    def eos(self) -> int:
        return self.engine.eos_token_id

    @property
    def newline(self) -> Optional[int]:
        return self.engine.newline_token_id

    def tokenize(self, text: str, add_bos: bool = False, special: bool = False) -> List[int]:
        return self.engine.tokenize(text, add_bos=add_bos, special=special)

    def literal(self, text: str) -> Tuple[int, ...]:
        """Tokens for a structural literal, tokenized once and cached."""
        tokens = self._literals.get(text)
        if tokens is None:
            tokens = tuple(self.engine.tokenize(text, add_bos=False, special=False))
            self._literals[text] = tokens
        return tokens

    def piece(self, token: int, special: bool = False) -> bytes:
        key = (token, special)
        data = self._pieces.get(key)
        if data is None:
            data = self.engine.token_to_piece(token, special=special)
            self._pieces[key] = data
        return data

    def detokenize(self, token: int, special: bool = False) -> str:
        """
        Text of a single token.

        Incomplete UTF-8 sequences decode to U+FFFD; use stream_decoder() to
        assemble generated text.
        """
        key = (token, special)
        text = self._texts.get(key)
        if text is None:
            text = self.piece(token, special).decode("utf-8", errors="replace")
            self._texts[key] = text
        return text

    def stream_decoder(self, special: bool = False) -> StreamDecoder:
        return StreamDecoder(self, special=special)

    # Token classes

    @property
    def string_tokens(self) -> FrozenSet[int]:
        self._scan()
        return self._string_tokens

    @property
    def string_start_tokens(self) -> FrozenSet[int]:
        """String tokens that contain at least one non-whitespace character."""
        self._scan()
        return self._string_start_tokens

    @property
    def digit_tokens(self) -> Dict[int, str]:
        self._scan()
        return self._digit_tokens

    @property
    def whitespace_tokens(self) -> FrozenSet[int]:
        self._scan()
        return self._whitespace_tokens

    @property
    def quote_tokens(self) -> FrozenSet[int]:
        return self.tokens_for_text('"')

    @property
    def protected_tokens(self) -> FrozenSet[int]:
        return self.whitespace_tokens | self.quote_tokens | {self.eos}

    def tokens_for_text(self, text: str) -> FrozenSet[int]:
        """All tokens whose (non-special) text is exactly `text`."""
        self._scan()
        return frozenset(self._text_index.get(text, ()))

    def prefix_tokens(self, target: str) -> FrozenSet[int]:
        """Tokens whose text is a non-empty prefix of `target`."""
        self._scan()
        found = set()
        for end in range(1, len(target) + 1):
            found.update(self._text_index.get(target[:end], ()))
        return frozenset(found)

    def _scan(self) -> None:
        if self._text_index is not None:
            return

        logger.debug(f"Scanning {self.size} tokens for token classes")

        text_index: Dict[str, List[int]] = {}
        string_tokens = []
        string_start = []
        whitespace = []
        digits: Dict[int, str] = {}

        for token in range(self.size):
            text = self.detokenize(token)
            if not text:
                continue

            text_index.setdefault(text, []).append(token)

            if text.isspace():
                whitespace.append(token)

            if is_string_safe(text):
                string_tokens.append(token)
                if text.strip():
                    string_start.append(token)

            if text.isdigit() and text.isascii():
                digits[token] = text

        self._text_index = text_index
        self._string_tokens = frozenset(string_tokens)
        self._string_start_tokens = frozenset(string_start)
        self._whitespace_tokens = frozenset(whitespace)
        self._digit_tokens = digits

        logger.info(
            f"Token classes: {len(string_tokens)} string, {len(digits)} digit, "
            f"{len(whitespace)} whitespace"
        )

    def clear(self) -> None:
        """Drop every cache (e.g. after the engine's model changed)."""
        self._pieces.clear()
        self._texts.clear()
        self._literals.clear()
        self._text_index = None
        self.size = self.engine.n_vocab

    def get_stats(self) -> Dict[str, Any]:
        self._scan()
        return {
            'vocab_size': self.size,
            'cached_pieces': len(self._pieces),
            'string_tokens': len(self._string_tokens),
            'digit_tokens': len(self._digit_tokens),
            'whitespace_tokens': len(self._whitespace_tokens),
        }

    def __repr__(self) -> str:
        return f"TokenVocabulary(size={self.size}, cached={len(self._texts)})"
