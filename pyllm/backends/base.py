"""
Engine abstraction - the narrow interface pyllm needs from an LLM runtime.

The grammar engine, stream router and session controller never talk to
llama.cpp or transformers directly. They go through this protocol, which
only exposes what token-by-token generation requires.

Engine Protocol:
    - tokenize(): text -> token ids
    - token_to_piece(): token id -> raw bytes of its text
    - decode_batch(): evaluate tokens at a position, advancing the context
    - logits(): next-token scores for the last evaluated token
    - reset(): drop all sequence state (KV cache, positions)
    - embed(): sentence embedding for a text

Usage:
    ```python
    from pyllm.backends import EngineFactory

    # Auto-detect from the model identifier
    engine = EngineFactory.create("models/qwen3-1.7b-q4.gguf")

    tokens = engine.tokenize("Hello", add_bos=True)
    engine.decode_batch(tokens, start_pos=0)
    scores = engine.logits()
    ```
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import torch


class Engine(ABC):
    """
    Abstract base class for token-generation engines.

    Implementations own the model and its context. They are mutated only by
    the single active generation of the LLM that owns them.
    """

    @property
    @abstractmethod
    def n_vocab(self) -> int:
        """Size of the logits vector."""

    @property
    @abstractmethod
    def n_ctx(self) -> int:
        """Maximum number of tokens the context can hold."""

    @property
    @abstractmethod
    def eos_token_id(self) -> int:
        """End-of-sequence token."""

    @property
    def newline_token_id(self) -> Optional[int]:
        """Token for a single newline, if the vocabulary has one."""
        tokens = self.tokenize("\n", add_bos=False)
        return tokens[-1] if tokens else None

    @abstractmethod
    def tokenize(self, text: str, add_bos: bool = True, special: bool = False) -> List[int]:
        """
        Convert text to token ids.

        Args:
            text: Text to tokenize
            add_bos: Prepend the beginning-of-sequence token
            special: Parse special-token text (e.g. "<|im_end|>") as special tokens
        """

    @abstractmethod
    def token_to_piece(self, token: int, special: bool = False) -> bytes:
        """
        Raw bytes for a single token.

        Pieces may hold an incomplete UTF-8 sequence; callers join them with an
        incremental decoder.

        Args:
            token: Token id
            special: Render special tokens as text instead of b""
        """

    @abstractmethod
    def decode_batch(self, tokens: Sequence[int], start_pos: int) -> bool:
        """
        Evaluate tokens starting at position `start_pos`.

        Only the last token's logits are kept.

        Returns:
            bool: True on success, False if the runtime reported a failure
        """

    @abstractmethod
    def logits(self) -> torch.Tensor:
        """Float32 tensor of shape (n_vocab,) for the last decoded token."""

    @abstractmethod
    def reset(self) -> None:
        """Clear the position counter and all sequence state."""

    def embed(self, text: str) -> List[float]:
        """
        Extract an embedding vector for `text`.

        Raises:
            NotImplementedError: If the engine cannot produce embeddings
        """
        raise NotImplementedError(f"{self.__class__.__name__} does not support embeddings")

    @abstractmethod
    def get_model_info(self) -> Dict[str, Any]:
        """Model metadata (identifier, vocab size, context length, ...)."""

    def __repr__(self) -> str:
        info = self.get_model_info()
        return (
            f"{self.__class__.__name__}("
            f"model={info.get('model_id', 'unknown')}, "
            f"n_ctx={info.get('context_length', 'unknown')})"
        )


class EngineFactory:
    """
    Factory for creating engine instances.

    Usage:
        ```python
        # GGUF file -> llama.cpp
        engine = EngineFactory.create("models/mistral-7b.gguf", n_ctx=4096)

        # Hub id -> transformers
        engine = EngineFactory.create("Qwen/Qwen3-0.6B", device="mps")
        ```
    """

    @staticmethod
    def create(
        model_id: str,
        backend_type: Optional[str] = None,
        device: Optional[str] = None,
        **kwargs
    ) -> Engine:
        """
        Create the appropriate engine for a model.

        Args:
            model_id: Model identifier or file path
            backend_type: "llamacpp" or "transformers"; auto-detected when None
            device: Device for the transformers engine
            **kwargs: Engine-specific options

        Raises:
            ValueError: If the backend type is unsupported
        """
        if backend_type is None:
            backend_type = EngineFactory._detect_backend_type(model_id)

        if backend_type == "llamacpp":
            from pyllm.backends.llamacpp_backend import LlamaCppEngine
            return LlamaCppEngine(model_id, **kwargs)

        if backend_type == "transformers":
            from pyllm.backends.transformers_backend import TransformersEngine
            # Context size is fixed by the model config; embeddings are always available
            kwargs.pop("n_ctx", None)
            kwargs.pop("embedding", None)
            return TransformersEngine(model_id, device=device, **kwargs)

        raise ValueError(f"Unsupported backend type: {backend_type}")

    @staticmethod
    def _detect_backend_type(model_id: str) -> str:
        """
        GGUF/GGML files go to llama.cpp, everything else to transformers.
        """
        if model_id.lower().endswith(('.gguf', '.ggml', '.bin')):
            return "llamacpp"
        return "transformers"

    @staticmethod
    def list_available_backends() -> List[str]:
        """List the runtimes importable on this system."""
        available = []

        try:
            import llama_cpp  # noqa: F401
            available.append("llamacpp")
        except ImportError:
            pass

        try:
            import transformers  # noqa: F401
            available.append("transformers")
        except ImportError:
            pass

        return available
