"""
High-level Python API for pyllm.

This module provides the main user-facing API: the LLM client and the
result types it hands back.
"""

from pyllm.llm import LLM, StreamingResponse, StructuredOutput

# Re-export for convenience
__all__ = ["LLM", "StreamingResponse", "StructuredOutput"]
