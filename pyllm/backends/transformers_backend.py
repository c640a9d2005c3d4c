"""
HuggingFace Transformers engine with Apple Silicon MPS support.

Runs a causal LM one forward pass at a time, keeping `past_key_values` as
the context state so that the session controller can decode single tokens
and read the logits of the last position.

Usage:
    ```python
    from pyllm.backends import TransformersEngine

    engine = TransformersEngine("Qwen/Qwen3-0.6B", device="mps")
    ```
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import torch

from pyllm.backends.base import Engine
from pyllm.backends.device_utils import default_dtype, resolve_device

logger = logging.getLogger(__name__)


class TransformersEngine(Engine):
    """
    Engine for HuggingFace transformers models.

    Attributes:
        model_id: HuggingFace model identifier
        device: Device to run on (mps, cuda, cpu)
        model: Loaded AutoModelForCausalLM instance
        tokenizer: Loaded AutoTokenizer instance
        torch_dtype: Data type for model (float16 or float32)
    """

    def __init__(
        self,
        model_id: str,
        device: Optional[str] = None,
        torch_dtype: Optional[Any] = None,
        **kwargs
    ):
        """
        Initialize Transformers engine.

        Args:
            model_id: HuggingFace model identifier (e.g., "gpt2")
            device: Device to use ("mps", "cuda", "cpu", or None for auto)
            torch_dtype: PyTorch data type (None for auto: float16 on GPU, float32 on CPU)
            **kwargs: Additional arguments for model loading
        """
        self.model_id = model_id
        self.model = None
        self.tokenizer = None

        device = resolve_device(device)
        self.device = device
        self.torch_dtype = torch_dtype or default_dtype(device)

        self._past = None
        self._last_logits: Optional[torch.Tensor] = None
        self._n_past = 0

        logger.info(
            f"Initializing TransformersEngine: model={model_id}, "
            f"device={device}, dtype={self.torch_dtype}"
        )

        self._load_model(**kwargs)
        self._load_tokenizer()

    def _load_model(self, **kwargs):
        """Load HuggingFace model with optimizations."""
        try:
            from transformers import AutoModelForCausalLM
        except ImportError:
            raise ImportError(
                "transformers is required. "
                "Install with: pip install transformers"
            )

        logger.info(f"Loading model: {self.model_id}")

        load_kwargs = {
            'torch_dtype': self.torch_dtype,
            'low_cpu_mem_usage': True,
        }
        load_kwargs.update(kwargs)

        try:
            self.model = AutoModelForCausalLM.from_pretrained(self.model_id, **load_kwargs)
            self.model = self.model.to(torch.device(self.device))
            self.model.eval()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load model: {e}")
            raise

        logger.info(f"Model loaded successfully on {self.device}")

    def _load_tokenizer(self):
        """Load HuggingFace tokenizer."""
        from transformers import AutoTokenizer

        logger.info(f"Loading tokenizer: {self.model_id}")

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(self.model_id)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

    @property
    def n_vocab(self) -> int:
        # Logits may be padded beyond len(tokenizer)
        return self.model.config.vocab_size

    @property
    def n_ctx(self) -> int:
        return getattr(self.model.config, "max_position_embeddings", 2048)

    @property
    def eos_token_id(self) -> int:
        return self.tokenizer.eos_token_id

    def tokenize(self, text: str, add_bos: bool = True, special: bool = False) -> List[int]:
        encoded = self.tokenizer(
            text,
            add_special_tokens=add_bos,
            split_special_tokens=not special
        )
        return list(encoded["input_ids"])

    def token_to_piece(self, token: int, special: bool = False) -> bytes:
        if not special and token in self.tokenizer.all_special_ids:
            return b""

        piece = self.tokenizer.convert_ids_to_tokens(token)
        if piece is None:
            return b""

        # Byte-fallback tokens ("<0xE2>") carry a single raw byte
        if piece.startswith("<0x") and piece.endswith(">") and len(piece) == 6:
            return bytes([int(piece[3:5], 16)])

        return self.tokenizer.convert_tokens_to_string([piece]).encode("utf-8")

    def decode_batch(self, tokens: Sequence[int], start_pos: int) -> bool:
        if start_pos == 0:
            self.reset()
        elif start_pos != self._n_past:
            logger.error(f"Cannot decode at {start_pos}: context holds {self._n_past} tokens")
            return False

        input_ids = torch.tensor([list(tokens)], dtype=torch.long, device=self.device)

        try:
            with torch.no_grad():
                outputs = self.model(
                    input_ids=input_ids,
                    past_key_values=self._past,
                    use_cache=True
                )
        except RuntimeError as e:
            logger.error(f"Forward pass failed at position {start_pos}: {e}")
            return False

        self._past = outputs.past_key_values
        self._last_logits = outputs.logits[0, -1, :].float().cpu()
        self._n_past = start_pos + len(tokens)
        return True

    def logits(self) -> torch.Tensor:
        if self._last_logits is None:
            raise RuntimeError("No tokens decoded yet")
        return self._last_logits.clone()

    def reset(self) -> None:
        self._past = None
        self._last_logits = None
        self._n_past = 0

    def embed(self, text: str) -> List[float]:
        """Mean-pooled last hidden state."""
        inputs = self.tokenizer(text, return_tensors="pt")
        inputs = {k: v.to(self.device) for k, v in inputs.items()}

        with torch.no_grad():
            outputs = self.model(**inputs, output_hidden_states=True, use_cache=False)

        hidden = outputs.hidden_states[-1][0]
        return hidden.mean(dim=0).float().cpu().tolist()

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            'model_id': self.model_id,
            'device': self.device,
            'dtype': str(self.torch_dtype),
            'backend': 'transformers'
        }

        if self.tokenizer:
            info['vocab_size'] = len(self.tokenizer)

        if self.model is not None:
            config = self.model.config
            if hasattr(config, 'max_position_embeddings'):
                info['context_length'] = config.max_position_embeddings
            if hasattr(config, 'hidden_size'):
                info['hidden_size'] = config.hidden_size
            if hasattr(config, 'num_hidden_layers'):
                info['num_layers'] = config.num_hidden_layers

        return info
