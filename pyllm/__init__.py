"""
pyllm: Local LLM Client with Schema-Constrained Output

pyllm runs a local language model token by token and layers chat,
streaming, structured output and embeddings on top of it.

Key Features:
    - JSON output that matches a schema by construction (grammar-driven
      token masking, no retries)
    - Support for JSON Schema and Pydantic models
    - Thinking/response split for reasoning models (<think> ... </think>)
    - Chat templates (ChatML, Alpaca, Llama 2, Mistral) with bounded history
    - Embeddings and per-call performance metrics
    - Backend support for both llama.cpp and HuggingFace transformers

Quick Start:
    ```python
    from pyllm import LLM, Template
    from pydantic import BaseModel

    class User(BaseModel):
        name: str
        age: int

    llm = LLM.from_pretrained(
        "models/qwen2.5-1.5b-instruct-q4.gguf",
        template=Template.chatml("You are a helpful assistant.")
    )

    print(llm.respond("Hi there!"))

    user = llm.generate("Generate a user profile for Alice, age 28", User).value
    print(user)
    ```

Architecture:
    1. Engine: llama.cpp or transformers, driven one batch at a time
    2. Session: Context position, sampling chain, stop sequence, cancellation
    3. Router: Splits free-form output into thinking and response channels
    4. Grammar Engine: Walks the schema, emitting literals and sampling values
    5. Validator: Checks structured output against the schema
"""

__version__ = "0.1.0"

# Main API exports - these are the primary user-facing classes
from pyllm.api import LLM, StreamingResponse, StructuredOutput  # noqa: F401
from pyllm.chat import Chat, ChatHistory, Role, Template  # noqa: F401
from pyllm.decoding import SamplingParams, ThinkingMode  # noqa: F401
from pyllm.errors import (  # noqa: F401
    ContextOverflowError,
    DecodeError,
    EmbeddingsError,
    JSONDecodingError,
    LLMBusyError,
    LLMError,
    SchemaParseError,
)
from pyllm.metrics import PerformanceMetrics, PerformanceMonitor, PerformanceReport  # noqa: F401

__all__ = [
    "LLM",
    "StreamingResponse",
    "StructuredOutput",
    "Template",
    "Chat",
    "ChatHistory",
    "Role",
    "SamplingParams",
    "ThinkingMode",
    "PerformanceMetrics",
    "PerformanceMonitor",
    "PerformanceReport",
    "LLMError",
    "SchemaParseError",
    "ContextOverflowError",
    "DecodeError",
    "JSONDecodingError",
    "EmbeddingsError",
    "LLMBusyError",
]
