#!/usr/bin/env python3
"""
Demo: Streaming chat with a reasoning model.

Thinking and response arrive on separate channels; the history is kept
between turns and trimmed when the prompt outgrows the context.

Usage:
    python examples/demo_chat.py models/qwen3-1.7b-q4.gguf
"""

import sys

from pyllm import LLM, EmbeddingsError, Template, ThinkingMode


def main():
    if len(sys.argv) < 2:
        print("Usage: demo_chat.py MODEL")
        sys.exit(1)

    llm = LLM.from_pretrained(
        sys.argv[1],
        template=Template.chatml_thinking("You are concise."),
        thinking_mode=ThinkingMode.ENABLED,
        history_limit=6
    )

    questions = [
        "What is 17 * 23?",
        "And divided by 7?",
        "Summarize what we computed."
    ]

    for question in questions:
        print(f"\nYou: {question}")

        stream = llm.respond_stream(question)

        print("[thinking] ", end="", flush=True)
        for chunk in stream.thinking:
            print(chunk, end="", flush=True)

        print("\nAssistant: ", end="", flush=True)
        for chunk in stream.response:
            print(chunk, end="", flush=True)
        stream.wait()
        print()

        if stream.failed:
            print(f"✗ {stream.error}")

    print(f"\nHistory: {len(llm.history)} entries")
    try:
        vector = llm.embeddings("17 * 23 = 391")
        print(f"Embedding: {len(vector)} dimensions")
    except EmbeddingsError as e:
        print(f"No embeddings: {e}")


if __name__ == "__main__":
    main()
