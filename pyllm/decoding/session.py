"""
Generation session - the per-context sampling controller.

A GenerationSession owns the position counter of one engine context and
everything that changes token by token while generating: the current
logits, the recent-token window for the repeat penalty, the rolling
stop-sequence buffer and the cancellation token.

Two consumers drive it:
    - the stream router, through predict_next()
    - the grammar engine, through sample_constrained() and decode_tokens()

Usage:
    ```python
    session = GenerationSession(engine, vocabulary, SamplingParams(seed=1))
    session.set_stop_sequence("<|im_end|>")

    if session.prepare_context(prompt):
        token = session.predict_next()
        while token != session.eos:
            token = session.predict_next()
    ```
"""

import logging
import threading
from collections import deque
from typing import Deque, FrozenSet, Iterable, Optional, Sequence, Tuple

import torch
from torch import Tensor

from pyllm.backends.base import Engine
from pyllm.decoding.sampler import Sampler, SamplingParams, apply_mask, restore_protected
from pyllm.decoding.vocabulary import TokenVocabulary
from pyllm.errors import ContextOverflowError, DecodeError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe stop flag checked once per generated token."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def reset(self) -> None:
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class GenerationSession:
    """
    Sampling/session controller over one engine context.

    Attributes:
        engine: Engine holding the context
        vocabulary: Cached vocabulary of the engine
        sampler: Sampling chain
        capacity: Maximum number of tokens in the context
        position: Number of tokens currently in the context
        tokens_generated: Tokens decoded after the prompt
        cancellation: Stop flag for the running generation
    """

    def __init__(
        self,
        engine: Engine,
        vocabulary: Optional[TokenVocabulary] = None,
        params: Optional[SamplingParams] = None,
        max_token_count: int = 2048,
        stop_sequence: Optional[str] = None
    ):
        self.engine = engine
        self.vocabulary = vocabulary or TokenVocabulary(engine)
        self.sampler = Sampler(params)
        self.capacity = min(max_token_count, engine.n_ctx)
        self.position = 0
        self.tokens_generated = 0
        self.cancellation = CancellationToken()

        self._recent: Deque[int] = deque(maxlen=self.sampler.params.repeat_last_n)
        self._logits: Optional[Tensor] = None
        self._stop_text: Optional[str] = None
        self._stop_tokens: Tuple[int, ...] = ()
        self._rolling: Deque[int] = deque(maxlen=1)
        self.stopped_by_sequence = False

        self.set_stop_sequence(stop_sequence)

        logger.debug(f"GenerationSession created: capacity={self.capacity}")

    @property
    def eos(self) -> int:
        return self.vocabulary.eos

    @property
    def stop_sequence(self) -> Optional[str]:
        return self._stop_text

    def set_stop_sequence(self, text: Optional[str]) -> None:
        """Tokenize the stop sequence once; None or "" disables it."""
        self._stop_text = text or None
        if self._stop_text:
            self._stop_tokens = tuple(self.vocabulary.tokenize(self._stop_text, special=True))
        else:
            self._stop_tokens = ()
        # Every stop token but the last is decoded before the match is seen
        self._stop_prefix = b"".join(
            self.vocabulary.piece(t, special=True) for t in self._stop_tokens[:-1]
        ).decode("utf-8", errors="replace")
        self._rolling = deque(maxlen=max(len(self._stop_tokens), 1))

    @property
    def emitted_stop_text(self) -> str:
        """Text of the stop sequence that reached the context before it matched."""
        return self._stop_prefix if self.stopped_by_sequence else ""

    @property
    def is_full(self) -> bool:
        return self.position >= self.capacity

    @property
    def should_continue(self) -> bool:
        return not self.cancellation.cancelled and not self.is_full

    def prepare_context(self, prompt: str) -> bool:
        """
        Tokenize `prompt` and decode it as one batch.

        Returns:
            False if the prompt tokenizes to nothing or does not leave room
            for at least one generated token

        Raises:
            DecodeError: If the engine fails to decode the prompt
        """
        tokens = self.vocabulary.tokenize(prompt, add_bos=True, special=True)
        if not tokens:
            logger.warning("Prompt tokenized to nothing")
            return False

        if self.position + len(tokens) >= self.capacity:
            logger.warning(
                f"Prompt of {len(tokens)} tokens does not fit "
                f"({self.position} used, capacity {self.capacity})"
            )
            return False

        self._rolling.clear()
        self.stopped_by_sequence = False
        self.tokens_generated = 0
        self.cancellation.reset()

        self._decode(tokens)
        logger.debug(f"Prepared context with {len(tokens)} prompt tokens")
        return True

    def current_logits(self) -> Tensor:
        """Logits for the next position, fetched once per decoded token."""
        if self._logits is None:
            self._logits = self.engine.logits().to(torch.float32)
        return self._logits

    def predict_next(self, excluding: FrozenSet[int] = frozenset()) -> int:
        """
        Sample the next token and decode it into the context.

        Returns EOS without sampling if generation was stopped or the
        context is full. A token that completes the stop sequence is not
        decoded; the session stops and EOS is returned instead.

        Args:
            excluding: Tokens that may not be chosen for this step

        Raises:
            DecodeError: If the engine fails to decode the chosen token
        """
        if not self.should_continue:
            return self.eos

        logits = self.current_logits()

        excluded = sorted(excluding)
        if excluded:
            index = torch.tensor(excluded, dtype=torch.long)
            saved = logits[index].clone()
            logits[index] = float('-inf')
            token = self.sampler.sample(logits, self._recent)
            logits[index] = saved
        else:
            token = self.sampler.sample(logits, self._recent)

        if token is None or token == self.eos:
            return self.eos

        if self._stop_tokens:
            self._rolling.append(token)
            if tuple(self._rolling) == self._stop_tokens:
                logger.debug(f"Stop sequence {self._stop_text!r} matched")
                self.stopped_by_sequence = True
                self.stop()
                return self.eos

        self.decode_tokens([token])
        return token

    def sample_constrained(self, allowed: FrozenSet[int]) -> Optional[int]:
        """
        Sample a token from `allowed` without decoding it.

        Returns:
            Token id, or None if stopped, full, or nothing in `allowed` survives
        """
        if not allowed or not self.should_continue:
            return None

        logits = self.current_logits()
        mask = self.sampler.allowed_mask(frozenset(allowed), logits.shape[-1])

        protected = sorted(self.vocabulary.protected_tokens)
        saved = apply_mask(logits, mask, protected)
        try:
            token = self.sampler.sample(logits, self._recent)
        finally:
            restore_protected(logits, protected, saved)

        return token

    def decode_tokens(self, tokens: Sequence[int]) -> None:
        """
        Append tokens to the context.

        Raises:
            ContextOverflowError: If the tokens do not fit
            DecodeError: If the engine fails
        """
        if not tokens:
            return

        if self.position + len(tokens) > self.capacity:
            raise ContextOverflowError(
                f"Context full: {self.position} + {len(tokens)} tokens exceeds {self.capacity}",
                token_count=self.position + len(tokens),
                capacity=self.capacity
            )

        self._decode(tokens)
        self.tokens_generated += len(tokens)

    def inject(self, tokens: Iterable[int]) -> bool:
        """Decode forced tokens; False if they do not fit or decoding fails."""
        try:
            self.decode_tokens(list(tokens))
        except (ContextOverflowError, DecodeError) as e:
            logger.error(f"Token injection failed: {e}")
            return False
        return True

    def _decode(self, tokens: Sequence[int]) -> None:
        if not self.engine.decode_batch(tokens, self.position):
            self.stop()
            raise DecodeError(f"Engine failed to decode {len(tokens)} tokens at position {self.position}")

        self.position += len(tokens)
        self._recent.extend(tokens)
        self._logits = None

    def stop(self) -> None:
        """Request the running generation to halt before its next token."""
        self.cancellation.cancel()

    def reset_context(self) -> None:
        """Clear the position counter and the engine's sequence state."""
        self.engine.reset()
        self.position = 0
        self.tokens_generated = 0
        self._logits = None
        self._recent.clear()
        self._rolling.clear()
        self.stopped_by_sequence = False

    def __repr__(self) -> str:
        return f"GenerationSession(position={self.position}, capacity={self.capacity})"
