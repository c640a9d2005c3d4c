"""
Main CLI entry point using Typer.

Defines the four commands: generate, chat, validate and embed.
"""

from pathlib import Path
from typing import List, Optional

import typer
from typing_extensions import Annotated

from .commands import chat_command, embed_command, generate_command, validate_command


app = typer.Typer(
    name="pyllm",
    help="pyllm - Local LLM client with schema-constrained output",
    add_completion=False,
    rich_markup_mode="rich"
)


ModelOption = Annotated[
    str,
    typer.Option("--model", "-m", help="GGUF path (llama.cpp) or HuggingFace model id")
]
BackendOption = Annotated[
    Optional[str],
    typer.Option("--backend", "-b", help="Backend: llamacpp or transformers (auto-detected if omitted)")
]
DeviceOption = Annotated[
    Optional[str],
    typer.Option("--device", "-d", help="Device: cpu, cuda, mps, or None for auto-detect")
]
MaxTokensOption = Annotated[
    int,
    typer.Option("--max-tokens", help="Context size in tokens")
]
TemperatureOption = Annotated[
    float,
    typer.Option("--temperature", "-t", help="Sampling temperature (0 = greedy)")
]
SeedOption = Annotated[
    Optional[int],
    typer.Option("--seed", help="Sampling seed")
]
SystemOption = Annotated[
    Optional[str],
    typer.Option("--system", help="System prompt")
]


@app.command("generate")
def generate(
    prompt: Annotated[
        str,
        typer.Option("--prompt", "-p", help="Generation prompt")
    ],
    schema: Annotated[
        Path,
        typer.Option("--schema", "-s", help="Path to JSON schema file", exists=True, file_okay=True, dir_okay=False)
    ],
    model: ModelOption,
    backend: BackendOption = None,
    device: DeviceOption = None,
    template: Annotated[
        Optional[str],
        typer.Option("--template", help="Chat template: chatml, chatml_thinking, alpaca, llama, mistral")
    ] = None,
    system: SystemOption = None,
    max_tokens: MaxTokensOption = 2048,
    temperature: TemperatureOption = 0.8,
    seed: SeedOption = None,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Path to save output JSON")
    ] = None,
    show_schema: Annotated[
        bool,
        typer.Option("--show-schema", help="Display the schema before generation")
    ] = False,
    show_metrics: Annotated[
        bool,
        typer.Option("--show-metrics", help="Display performance metrics")
    ] = False,
) -> None:
    """
    Generate JSON conforming to a schema using constrained decoding.

    Example:
        pyllm generate \\
            --prompt "Generate a user profile for Alice, age 28" \\
            --schema schema.json \\
            --model models/qwen2.5-1.5b-instruct-q4.gguf \\
            --template chatml \\
            --output result.json
    """
    generate_command(
        prompt=prompt,
        schema_path=schema,
        model=model,
        backend=backend,
        device=device,
        template=template,
        system_prompt=system,
        max_tokens=max_tokens,
        temperature=temperature,
        seed=seed,
        output_path=output,
        show_schema=show_schema,
        show_metrics=show_metrics
    )


@app.command("chat")
def chat(
    model: ModelOption,
    backend: BackendOption = None,
    device: DeviceOption = None,
    template: Annotated[
        str,
        typer.Option("--template", help="Chat template: chatml, chatml_thinking, alpaca, llama, mistral")
    ] = "chatml",
    system: SystemOption = None,
    max_tokens: MaxTokensOption = 2048,
    temperature: TemperatureOption = 0.8,
    seed: SeedOption = None,
    thinking: Annotated[
        bool,
        typer.Option("--thinking", help="Split the model's thinking block from the response")
    ] = False,
    history_limit: Annotated[
        int,
        typer.Option("--history-limit", help="Maximum chat entries kept")
    ] = 8,
    messages: Annotated[
        Optional[List[str]],
        typer.Option("--message", help="Send this message instead of starting a session (repeatable)")
    ] = None,
    show_metrics: Annotated[
        bool,
        typer.Option("--show-metrics", help="Display performance metrics after each reply")
    ] = False,
) -> None:
    """
    Chat with a model.

    Example:
        pyllm chat --model models/qwen3-1.7b-q4.gguf --template chatml_thinking --thinking
    """
    chat_command(
        model=model,
        backend=backend,
        device=device,
        template=template,
        system_prompt=system,
        max_tokens=max_tokens,
        temperature=temperature,
        seed=seed,
        thinking=thinking,
        history_limit=history_limit,
        messages=messages,
        show_metrics=show_metrics
    )


@app.command("validate")
def validate(
    json_file: Annotated[
        Path,
        typer.Option("--json", "-j", help="Path to JSON file to validate", exists=True, file_okay=True, dir_okay=False)
    ],
    schema: Annotated[
        Path,
        typer.Option("--schema", "-s", help="Path to JSON schema file", exists=True, file_okay=True, dir_okay=False)
    ],
    show_schema: Annotated[
        bool,
        typer.Option("--show-schema", help="Display the schema")
    ] = False,
) -> None:
    """
    Validate existing JSON against a schema.

    Example:
        pyllm validate --json output.json --schema schema.json
    """
    validate_command(
        json_path=json_file,
        schema_path=schema,
        show_schema=show_schema
    )


@app.command("embed")
def embed(
    text: Annotated[
        str,
        typer.Option("--text", help="Text to embed")
    ],
    model: ModelOption,
    backend: BackendOption = None,
    device: DeviceOption = None,
    max_tokens: MaxTokensOption = 2048,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Path to save the vector as JSON")
    ] = None,
) -> None:
    """
    Print the embedding vector of a text.

    Example:
        pyllm embed --text "hello world" --model models/nomic-embed-text.gguf
    """
    embed_command(
        text=text,
        model=model,
        backend=backend,
        device=device,
        max_tokens=max_tokens,
        output_path=output
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version and exit")
    ] = False,
) -> None:
    """
    pyllm - Local LLM client with schema-constrained output.
    """
    if version:
        from pyllm import __version__
        typer.echo(f"pyllm version {__version__}")
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def cli() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    cli()
