"""
CLI command implementations.

This module contains the logic behind each CLI command:
- generate: Structured JSON generation
- chat: Interactive (or single-message) chat
- validate: Validate existing JSON
- embed: Print an embedding vector
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pyllm.chat import Template
from pyllm.decoding import SamplingParams, ThinkingMode
from pyllm.errors import LLMError

from .display import (
    console,
    create_progress_spinner,
    print_embedding,
    print_error,
    print_header,
    print_info,
    print_json,
    print_metrics,
    print_model_loading,
    print_schema,
    print_separator,
    print_stream_chunk,
    print_success,
    print_thinking,
    print_validation_errors,
    print_warning,
)

EXIT_WORDS = ("exit", "quit", "/exit", "/quit")


def load_schema_file(schema_path: Path) -> Dict:
    """
    Load and parse a JSON schema file.

    Raises:
        ValueError: If the file doesn't exist or isn't valid JSON
    """
    if not schema_path.exists():
        raise ValueError(f"Schema file not found: {schema_path}")

    try:
        with open(schema_path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in schema file: {e}")


def load_llm(
    model: str,
    backend: Optional[str],
    device: Optional[str],
    template: Optional[str],
    system_prompt: Optional[str],
    max_tokens: int,
    temperature: float,
    seed: Optional[int],
    thinking: bool = False,
    history_limit: int = 8,
    **engine_kwargs: Any
):
    """Load a model behind a spinner; exits with code 1 on failure."""
    print_model_loading(model, backend)

    try:
        from pyllm import LLM

        chat_template = Template.preset(template, system_prompt) if template else None
        sampling = SamplingParams(seed=seed, temperature=temperature)
        sampling.validate()

        with create_progress_spinner() as progress:
            progress.add_task(description="Loading model...", total=None)

            llm = LLM.from_pretrained(
                model,
                backend=backend,
                device=device,
                template=chat_template,
                sampling=sampling,
                history_limit=history_limit,
                max_token_count=max_tokens,
                thinking_mode=ThinkingMode.ENABLED if thinking else ThinkingMode.NONE,
                **engine_kwargs
            )

        print_success("Model loaded successfully")
        return llm

    except (ImportError, FileNotFoundError, ValueError, RuntimeError) as e:
        print_error(f"Failed to load model: {e}")
        raise SystemExit(1)


def generate_command(
    prompt: str,
    schema_path: Path,
    model: str,
    backend: Optional[str],
    device: Optional[str],
    template: Optional[str],
    system_prompt: Optional[str],
    max_tokens: int,
    temperature: float,
    seed: Optional[int],
    output_path: Optional[Path],
    show_schema: bool,
    show_metrics: bool
) -> None:
    """
    Execute the generate command.

    Args:
        prompt: Generation prompt
        schema_path: Path to JSON schema file
        model: Model path (GGUF) or HuggingFace id
        backend: llamacpp, transformers, or None to detect
        device: Device for the transformers backend
        template: Chat template preset name
        system_prompt: System prompt for the template
        max_tokens: Context size
        temperature: Sampling temperature
        seed: Sampling seed
        output_path: Optional path to save the output JSON
        show_schema: Whether to display the schema
        show_metrics: Whether to display performance metrics
    """
    print_header("pyllm - Structured Generation")

    try:
        schema = load_schema_file(schema_path)
        print_success(f"Loaded schema from: {schema_path}")
    except ValueError as e:
        print_error(f"Failed to load schema: {e}")
        raise SystemExit(1)

    if show_schema:
        print_schema(schema)

    print_separator()
    print_info(f"Prompt: [bold]{prompt}[/bold]")
    print_info(f"Template: [bold]{template or 'none'}[/bold]")
    print_info(f"Context: [bold]{max_tokens}[/bold] tokens")
    print_separator()

    llm = load_llm(model, backend, device, template, system_prompt, max_tokens, temperature, seed)

    console.print()
    try:
        with create_progress_spinner() as progress:
            progress.add_task(description="Generating...", total=None)
            result = llm.generate(prompt, schema)
    except LLMError as e:
        print_error(f"Generation failed: {e}")
        raise SystemExit(1)

    print_success(f"Generated {result.tokens_generated} tokens in {result.latency_ms:.0f} ms")
    print_json(result.value, title="Generated Output")

    if show_metrics:
        print_metrics(llm.monitor.current_metrics)

    if output_path:
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                json.dump(result.value, f, indent=2)
            print_success(f"Output saved to: {output_path}")
        except OSError as e:
            print_warning(f"Failed to save output: {e}")


def chat_command(
    model: str,
    backend: Optional[str],
    device: Optional[str],
    template: str,
    system_prompt: Optional[str],
    max_tokens: int,
    temperature: float,
    seed: Optional[int],
    thinking: bool,
    history_limit: int,
    messages: Optional[List[str]],
    show_metrics: bool
) -> None:
    """
    Execute the chat command.

    With `messages` each one is sent in turn; otherwise an interactive loop
    reads input until "exit" or end of input.
    """
    print_header("pyllm - Chat")

    llm = load_llm(
        model, backend, device, template, system_prompt, max_tokens,
        temperature, seed, thinking=thinking, history_limit=history_limit
    )

    def turn(message: str) -> None:
        console.print(f"[bold green]You:[/bold green] {message}")
        stream = llm.respond_stream(message)

        thinking_parts = []
        answering = False

        def start_answer() -> None:
            print_thinking("".join(thinking_parts))
            console.print("[bold cyan]Assistant:[/bold cyan] ", end="")

        for kind, chunk in stream.events():
            if kind == "thinking":
                thinking_parts.append(chunk)
                continue
            if not answering:
                start_answer()
                answering = True
            print_stream_chunk(chunk)

        if not answering:
            start_answer()
        stream.wait()
        console.print()

        if stream.failed:
            print_error(f"Generation failed: {stream.error}")
        if show_metrics:
            print_metrics(llm.monitor.current_metrics)

    if messages:
        for message in messages:
            turn(message)
        return

    import typer

    print_info("Type 'exit' to quit")
    while True:
        try:
            message = typer.prompt("", prompt_suffix="> ")
        except (EOFError, typer.Abort):
            break
        if message.strip().lower() in EXIT_WORDS:
            break
        if message.strip():
            turn(message)


def validate_command(
    json_path: Path,
    schema_path: Path,
    show_schema: bool
) -> None:
    """
    Execute the validate command.

    Args:
        json_path: Path to JSON file to validate
        schema_path: Path to JSON schema file
        show_schema: Whether to display the schema
    """
    print_header("pyllm - Validate JSON")

    try:
        schema = load_schema_file(schema_path)
        print_success(f"Loaded schema from: {schema_path}")
    except ValueError as e:
        print_error(f"Failed to load schema: {e}")
        raise SystemExit(1)

    if show_schema:
        print_schema(schema)

    if not json_path.exists():
        print_error(f"JSON file not found: {json_path}")
        raise SystemExit(1)

    raw = json_path.read_text()
    try:
        data = json.loads(raw)
        print_success(f"Loaded JSON from: {json_path}")
        print_json(data, title="Input JSON")
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON: {e}")
        raise SystemExit(1)

    from pyllm.validation import validate

    print_separator()
    print_info("Validating...")

    result = validate(raw, schema)

    console.print()
    if result.is_valid:
        print_success("Validation passed!")
    else:
        print_error("Validation failed")
        print_validation_errors(result.errors)
        raise SystemExit(1)


def embed_command(
    text: str,
    model: str,
    backend: Optional[str],
    device: Optional[str],
    max_tokens: int,
    output_path: Optional[Path]
) -> None:
    """Execute the embed command."""
    print_header("pyllm - Embeddings")

    llm = load_llm(model, backend, device, None, None, max_tokens, 0.8, None, embedding=True)

    try:
        vector = llm.embeddings(text)
    except LLMError as e:
        print_error(f"Embedding failed: {e}")
        raise SystemExit(1)

    print_embedding(vector)

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(vector, f)
        print_success(f"Embedding saved to: {output_path}")
