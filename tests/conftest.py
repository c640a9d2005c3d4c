"""
Shared fixtures: a deterministic in-memory engine.

FakeEngine tokenizes by greedy longest match over a small vocabulary and
scores the next token from a script: every token that is a prefix of the
text the script still expects gets a high logit (longer prefixes higher),
and EOS wins once the script is exhausted. Unmatched tokens fall back to a
fixed descending order, so greedy sampling is fully deterministic.
"""

from typing import Callable, List, Optional, Sequence

import pytest
import torch

from pyllm.backends.base import Engine
from pyllm.decoding import SamplingParams

SPECIAL = ["<s>", "</s>", "<think>", "</think>", "<|im_end|>"]
WORDS = [
    "\n", "true", "false", "null", "red", "gr", "green", "een", "blue",
    "Alice", "Bob", "12", "00", "42", " the", "answer", "reasoning", "  ",
]

BOS = 0
EOS = 1


def script_policy(*scripts: str) -> Callable[[str], str]:
    """Policy following the first script that starts with the generated text."""
    def policy(text: str) -> str:
        for script in scripts:
            if script.startswith(text):
                return script[len(text):]
        return ""
    return policy


class FakeEngine(Engine):
    """
    Scripted engine for tests.

    Args:
        scripts: Texts the model "wants" to generate (see script_policy)
        policy: Custom policy mapping generated text to the expected remainder
        n_ctx: Context size
        fail_decode_at: 1-based decode_batch call that reports failure
        on_logits: Called with the engine before every logits() call
    """

    def __init__(
        self,
        scripts: Sequence[str] = (),
        policy: Optional[Callable[[str], str]] = None,
        n_ctx: int = 512,
        fail_decode_at: Optional[int] = None,
        on_logits: Optional[Callable[["FakeEngine"], None]] = None
    ):
        self.pieces: List[str] = list(dict.fromkeys(SPECIAL + WORDS + [chr(c) for c in range(32, 127)]))
        self.ids = {piece: i for i, piece in enumerate(self.pieces)}
        self.special_ids = set(range(len(SPECIAL)))

        self.policy = policy or script_policy(*scripts)
        self._n_ctx = n_ctx
        self.fail_decode_at = fail_decode_at
        self.on_logits = on_logits

        self.context: List[int] = []
        self.prompt_length = 0
        self.decode_calls = 0
        self.reset_calls = 0
        self.piece_calls = 0

    @property
    def n_vocab(self) -> int:
        return len(self.pieces)

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    @property
    def eos_token_id(self) -> int:
        return EOS

    def tokenize(self, text: str, add_bos: bool = True, special: bool = False) -> List[int]:
        tokens = [BOS] if add_bos else []
        i = 0
        while i < len(text):
            best = None
            for piece, token in self.ids.items():
                if token in self.special_ids and not special:
                    continue
                if text.startswith(piece, i) and (best is None or len(piece) > len(self.pieces[best])):
                    best = token
            if best is None:
                raise ValueError(f"Cannot tokenize {text[i]!r}")
            tokens.append(best)
            i += len(self.pieces[best])
        return tokens

    def token_to_piece(self, token: int, special: bool = False) -> bytes:
        self.piece_calls += 1
        if token in self.special_ids and not special:
            return b""
        return self.pieces[token].encode("utf-8")

    def decode_batch(self, tokens: Sequence[int], start_pos: int) -> bool:
        self.decode_calls += 1
        if self.fail_decode_at is not None and self.decode_calls == self.fail_decode_at:
            return False

        if start_pos == 0:
            self.prompt_length = len(tokens)
        self.context = self.context[:start_pos] + list(tokens)
        return True

    @property
    def generated(self) -> List[int]:
        return self.context[self.prompt_length:]

    def generated_text(self) -> str:
        return "".join(self.pieces[t] for t in self.generated)

    def logits(self) -> torch.Tensor:
        if self.on_logits is not None:
            self.on_logits(self)

        remainder = self.policy(self.generated_text())
        scores = torch.arange(self.n_vocab, dtype=torch.float32) * -1e-3

        if not remainder:
            scores[EOS] += 10.0
            return scores

        for token, piece in enumerate(self.pieces):
            if token in (BOS, EOS):
                continue
            if remainder.startswith(piece):
                scores[token] = 10.0 + len(piece)
        return scores

    def reset(self) -> None:
        self.reset_calls += 1
        self.context = []
        self.prompt_length = 0

    def embed(self, text: str) -> List[float]:
        return [float(len(text)), float(sum(ord(c) for c in text) % 997), float(len(self.context))]

    def get_model_info(self):
        return {
            'model_id': 'fake',
            'context_length': self._n_ctx,
            'vocab_size': self.n_vocab,
        }


@pytest.fixture
def greedy() -> SamplingParams:
    """Deterministic sampling without repeat penalty."""
    return SamplingParams(seed=0, temperature=0.0, repeat_penalty=1.0)


@pytest.fixture
def make_engine():
    """Factory for FakeEngine instances."""
    return FakeEngine
