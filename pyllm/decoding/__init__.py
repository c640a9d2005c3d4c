"""
Decoding module - token-level generation control.

Components:
    - vocabulary: Cached tokenize/detokenize and token-class sets
    - sampler: Sampling chain (repeat penalty, top-k, top-p, temperature)
    - session: Context position, stop sequence and cancellation
    - grammar: Schema-constrained JSON generation
    - router: Thinking/response split of free-form output

Flow:
    1. GenerationSession.prepare_context() decodes the prompt
    2a. Free-form: StreamRouter pulls tokens via predict_next() and routes
        decoded text into the thinking and response channels
    2b. Structured: JSONGrammarEngine emits literals and samples values
        from per-type allowed token sets via sample_constrained()
"""

from pyllm.decoding.grammar import JSONGrammarEngine
from pyllm.decoding.router import (
    RouterState,
    StreamRouter,
    ThinkingMode,
    ThinkingPhase,
    TokenChannel,
    finish,
    initial_state,
    step,
)
from pyllm.decoding.sampler import Sampler, SamplingParams
from pyllm.decoding.session import CancellationToken, GenerationSession
from pyllm.decoding.vocabulary import StreamDecoder, TokenVocabulary

__all__ = [
    "TokenVocabulary",
    "StreamDecoder",
    "Sampler",
    "SamplingParams",
    "GenerationSession",
    "CancellationToken",
    "JSONGrammarEngine",
    "StreamRouter",
    "ThinkingMode",
    "ThinkingPhase",
    "RouterState",
    "TokenChannel",
    "initial_state",
    "step",
    "finish",
]
