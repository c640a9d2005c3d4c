"""
llama.cpp engine with Metal acceleration for Apple Silicon.

Wraps a llama-cpp-python `Llama` instance behind the Engine protocol. The
low-level `eval()` API is used instead of the high-level completion call so
that pyllm can drive generation one token at a time and read raw logits.

Features:
    - GGUF model support
    - Metal acceleration (all layers on GPU)
    - Raw logits access for constrained decoding
    - Embeddings (requires embedding=True)

Usage:
    ```python
    from pyllm.backends import LlamaCppEngine

    engine = LlamaCppEngine(
        "models/qwen3-1.7b-q4.gguf",
        n_gpu_layers=-1,  # All layers on GPU (Metal)
        n_ctx=2048
    )
    ```
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

import torch

from pyllm.backends.base import Engine

logger = logging.getLogger(__name__)


class LlamaCppEngine(Engine):
    """
    Engine for llama.cpp (GGUF) models.

    Attributes:
        model_path: Path to GGUF model file
        llm: llama_cpp.Llama instance
        n_gpu_layers: Number of layers on GPU (-1 = all)
    """

    def __init__(
        self,
        model_path: str,
        n_gpu_layers: int = -1,
        n_ctx: int = 2048,
        n_batch: int = 512,
        use_mlock: bool = True,
        embedding: bool = False,
        seed: int = -1,
        **kwargs
    ):
        """
        Initialize llama.cpp engine.

        Args:
            model_path: Path to GGUF model file
            n_gpu_layers: Number of layers to offload to GPU
                         -1 = all layers (recommended for Apple Silicon)
            n_ctx: Context window size
            n_batch: Batch size for prompt processing
            use_mlock: Lock model in memory (prevents swapping)
            embedding: Enable embeddings extraction
            seed: RNG seed handed to llama.cpp (-1 = random)
            **kwargs: Additional llama.cpp options

        Raises:
            FileNotFoundError: If the model file does not exist
            ImportError: If llama-cpp-python is not installed
        """
        self.model_path = Path(model_path)
        self.n_gpu_layers = n_gpu_layers
        self.n_batch = n_batch
        self.use_mlock = use_mlock
        self.embedding = embedding
        self._n_ctx = n_ctx
        self.llm = None

        logger.info(
            f"Initializing LlamaCppEngine: model={model_path}, "
            f"n_gpu_layers={n_gpu_layers}, n_ctx={n_ctx}"
        )

        if not self.model_path.exists():
            raise FileNotFoundError(f"Model file not found: {model_path}")

        self._load_model(seed=seed, **kwargs)

    def _load_model(self, **kwargs):
        """Load llama.cpp model."""
        try:
            from llama_cpp import Llama
        except ImportError:
            raise ImportError(
                "llama-cpp-python is required. "
                "Install with: pip install llama-cpp-python"
            )

        logger.info(f"Loading GGUF model: {self.model_path}")

        load_kwargs = {
            'model_path': str(self.model_path),
            'n_gpu_layers': self.n_gpu_layers,
            'n_ctx': self._n_ctx,
            'n_batch': self.n_batch,
            'use_mlock': self.use_mlock,
            'embedding': self.embedding,
            'logits_all': False,
            'verbose': False,
        }
        load_kwargs.update(kwargs)

        try:
            self.llm = Llama(**load_kwargs)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Failed to load model: {e}")
            raise

        # llama.cpp may round the context size
        self._n_ctx = self.llm.n_ctx()
        logger.info(f"Model loaded successfully (n_ctx={self._n_ctx}, n_vocab={self.llm.n_vocab()})")

    @property
    def n_vocab(self) -> int:
        return self.llm.n_vocab()

    @property
    def n_ctx(self) -> int:
        return self._n_ctx

    @property
    def eos_token_id(self) -> int:
        return self.llm.token_eos()

    @property
    def newline_token_id(self) -> int:
        return self.llm.token_nl()

    def tokenize(self, text: str, add_bos: bool = True, special: bool = False) -> List[int]:
        if not text:
            return [self.llm.token_bos()] if add_bos else []
        return self.llm.tokenize(text.encode("utf-8"), add_bos=add_bos, special=special)

    def token_to_piece(self, token: int, special: bool = False) -> bytes:
        return self.llm.detokenize([token], special=special)

    def decode_batch(self, tokens: Sequence[int], start_pos: int) -> bool:
        if start_pos != self.llm.n_tokens:
            # Rewind: eval() overwrites the KV cache from n_tokens onwards
            logger.debug(f"Rewinding context from {self.llm.n_tokens} to {start_pos}")
            self.llm.n_tokens = start_pos

        try:
            self.llm.eval(list(tokens))
        except (RuntimeError, ValueError) as e:
            logger.error(f"llama.cpp decode failed at position {start_pos}: {e}")
            return False

        return True

    def logits(self) -> torch.Tensor:
        if self.llm.n_tokens == 0:
            raise RuntimeError("No tokens decoded yet")
        # Copy out of llama.cpp's score buffer
        return torch.tensor(self.llm.scores[self.llm.n_tokens - 1, :], dtype=torch.float32)

    def reset(self) -> None:
        self.llm.reset()

    def embed(self, text: str) -> List[float]:
        if not self.embedding:
            raise NotImplementedError(
                "Embeddings are disabled; load the model with embedding=True"
            )

        vector = self.llm.embed(text)

        # Models without pooling return one vector per token
        if vector and isinstance(vector[0], list):
            vector = torch.tensor(vector, dtype=torch.float32).mean(dim=0).tolist()

        return list(vector)

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            'model_id': str(self.model_path),
            'backend': 'llamacpp',
            'n_gpu_layers': self.n_gpu_layers,
            'context_length': self._n_ctx,
            'n_batch': self.n_batch,
            'embedding': self.embedding,
        }

        if self.llm is not None:
            info['vocab_size'] = self.llm.n_vocab()

        return info
