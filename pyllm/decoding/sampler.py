"""
Sampling chain and constrained-mask primitives.

Free-form and constrained generation share one sampling chain:

    repeat penalty -> top-k -> top-p -> temperature -> seeded distribution

Constrained generation first restricts the logits to an allowed token set.
Tokens outside the set are forced to -inf; protected tokens have their
original values restored after the choice, so the shared logits buffer is
never left without them.

Usage:
    ```python
    from pyllm.decoding import Sampler, SamplingParams

    sampler = Sampler(SamplingParams(seed=42, temperature=0.7))
    token = sampler.sample(logits, recent_tokens=[12, 99, 12])
    ```
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Sequence

import torch
from torch import Tensor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplingParams:
    """
    Sampling configuration.

    Attributes:
        seed: RNG seed; None draws a random one
        top_k: Keep the k most likely tokens (0 disables)
        top_p: Nucleus threshold (1.0 disables)
        temperature: Softmax temperature; 0 means greedy
        repeat_penalty: Penalty for tokens in the recent window (1.0 disables)
        repeat_last_n: Size of the recent window
    """
    seed: Optional[int] = None
    top_k: int = 40
    top_p: float = 0.95
    temperature: float = 0.8
    repeat_penalty: float = 1.1
    repeat_last_n: int = 64

    def validate(self) -> None:
        if self.top_k < 0:
            raise ValueError(f"top_k must be >= 0, got {self.top_k}")
        if not 0.0 < self.top_p <= 1.0:
            raise ValueError(f"top_p must be in (0, 1], got {self.top_p}")
        if self.temperature < 0.0:
            raise ValueError(f"temperature must be >= 0, got {self.temperature}")
        if self.repeat_penalty <= 0.0:
            raise ValueError(f"repeat_penalty must be > 0, got {self.repeat_penalty}")
        if self.repeat_last_n < 0:
            raise ValueError(f"repeat_last_n must be >= 0, got {self.repeat_last_n}")


class Sampler:
    """
    Seeded sampler implementing the chain above.

    Attributes:
        params: Sampling configuration
        generator: torch RNG used for the final draw
    """

    def __init__(self, params: Optional[SamplingParams] = None):
        self.params = params or SamplingParams()
        self.params.validate()

        self.generator = torch.Generator()
        if self.params.seed is not None:
            self.generator.manual_seed(self.params.seed)
        else:
            self.generator.seed()

        self._masks: Dict[FrozenSet[int], Tensor] = {}

    def sample(self, logits: Tensor, recent_tokens: Iterable[int] = ()) -> Optional[int]:
        """
        Draw one token.

        The input tensor is not modified.

        Returns:
            Token id, or None if every candidate is masked out
        """
        scores = logits.detach().to(torch.float32).clone()

        scores = self.apply_repeat_penalty(scores, recent_tokens)
        scores = self.apply_top_k(scores)
        scores = self.apply_top_p(scores)

        if not torch.isfinite(scores).any():
            return None

        if self.params.temperature == 0.0:
            return int(torch.argmax(scores).item())

        probs = torch.softmax(scores / self.params.temperature, dim=-1)
        token = torch.multinomial(probs, num_samples=1, generator=self.generator)
        return int(token.item())

    def apply_repeat_penalty(self, scores: Tensor, recent_tokens: Iterable[int]) -> Tensor:
        penalty = self.params.repeat_penalty
        if penalty == 1.0:
            return scores

        indices = sorted(set(recent_tokens))
        if not indices:
            return scores

        index = torch.tensor(indices, dtype=torch.long)
        values = scores[index]
        scores[index] = torch.where(values > 0, values / penalty, values * penalty)
        return scores

    def apply_top_k(self, scores: Tensor) -> Tensor:
        k = self.params.top_k
        if k <= 0 or k >= scores.shape[-1]:
            return scores

        kth_value = torch.topk(scores, k).values[-1]
        scores[scores < kth_value] = float('-inf')
        return scores

    def apply_top_p(self, scores: Tensor) -> Tensor:
        p = self.params.top_p
        if p >= 1.0:
            return scores

        sorted_scores, sorted_indices = torch.sort(scores, descending=True, stable=True)
        probs = torch.softmax(sorted_scores, dim=-1)
        cumulative = torch.cumsum(probs, dim=-1)

        # Drop tokens once the mass before them already exceeds p; the top
        # token always survives
        remove = (cumulative - probs) > p
        scores[sorted_indices[remove]] = float('-inf')
        return scores

    def allowed_mask(self, allowed: FrozenSet[int], vocab_size: int) -> Tensor:
        """
        Boolean mask where True marks tokens outside `allowed`.

        Masks for frozensets are memoized per sampler; the vocabulary hands
        out the same frozenset objects for its token classes.
        """
        mask = self._masks.get(allowed)
        if mask is None:
            mask = create_mask(allowed, vocab_size)
            if len(self._masks) < 256:
                self._masks[allowed] = mask
        return mask


def create_mask(allowed: Iterable[int], vocab_size: int) -> Tensor:
    """Boolean mask where True = invalid (should be masked)."""
    mask = torch.ones(vocab_size, dtype=torch.bool)

    valid_indices = [t for t in allowed if 0 <= t < vocab_size]
    if valid_indices:
        mask[torch.tensor(valid_indices, dtype=torch.long)] = False

    return mask


def apply_mask(logits: Tensor, mask: Tensor, protected: Sequence[int] = ()) -> Tensor:
    """
    Force masked logits to -inf in place.

    Returns:
        The original values of `protected` tokens, to hand to restore_protected()
    """
    index = torch.tensor(list(protected), dtype=torch.long)
    saved = logits[index].clone()
    logits[mask] = float('-inf')
    return saved


def restore_protected(logits: Tensor, protected: Sequence[int], saved: Tensor) -> None:
    index = torch.tensor(list(protected), dtype=torch.long)
    logits[index] = saved
