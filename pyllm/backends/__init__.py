"""
Engine backend module.

Provides one interface over the runtimes pyllm can drive token by token.

Components:
    - base: Abstract Engine protocol and EngineFactory
    - llamacpp_backend: llama.cpp implementation with Metal support
    - transformers_backend: HuggingFace transformers implementation
    - device_utils: Device resolution and dtype choice (MPS, CUDA, CPU)

Apple Silicon Optimization:
    - llama.cpp: Metal acceleration via n_gpu_layers=-1
    - transformers: MPS via torch.device("mps")

Example:
    ```python
    from pyllm.backends import EngineFactory

    engine = EngineFactory.create("models/mistral-7b-q4.gguf", n_ctx=4096)
    ```
"""

from pyllm.backends.base import Engine, EngineFactory
from pyllm.backends.device_utils import (
    available_devices,
    default_dtype,
    describe_platform,
    resolve_device,
)
from pyllm.backends.llamacpp_backend import LlamaCppEngine
from pyllm.backends.transformers_backend import TransformersEngine

__all__ = [
    "Engine",
    "EngineFactory",
    "LlamaCppEngine",
    "TransformersEngine",
    "available_devices",
    "default_dtype",
    "describe_platform",
    "resolve_device",
]
