"""
Command-line interface module.

A rich terminal interface for pyllm built with Typer and Rich.

Commands:
    - generate: Generate JSON conforming to a schema
    - chat: Chat with a model (thinking shown separately)
    - validate: Validate existing JSON against a schema
    - embed: Print the embedding of a text

Example Usage:
    ```bash
    # Structured generation
    pyllm generate \\
        --schema person.json \\
        --prompt "Describe a fictional person" \\
        --model models/qwen2.5-1.5b-instruct-q4.gguf \\
        --template chatml

    # Chat with a reasoning model
    pyllm chat \\
        --model models/qwen3-1.7b-q4.gguf \\
        --template chatml_thinking \\
        --thinking

    # Validation
    pyllm validate --json output.json --schema person.json
    ```
"""

from .main import app

__all__ = ["app"]
