"""
Rich terminal display helpers for the CLI.

Provides formatted output using the Rich library for:
- Progress spinners
- Syntax-highlighted JSON
- Thinking panels and streamed responses
- Performance tables
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.syntax import Syntax
from rich.table import Table

from pyllm.backends.device_utils import describe_platform
from pyllm.metrics import PerformanceMetrics
from pyllm.validation import SchemaViolation


console = Console()


def print_header(title: str) -> None:
    """Print a formatted header."""
    console.print()
    console.print(f"[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))
    console.print()


def print_success(message: str) -> None:
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    console.print(f"[blue]ℹ[/blue] {message}")


def print_json(data: Any, title: Optional[str] = None) -> None:
    """
    Print JSON with syntax highlighting.

    Args:
        data: JSON-serializable data or JSON text
        title: Optional panel title
    """
    json_str = data if isinstance(data, str) else json.dumps(data, indent=2)
    syntax = Syntax(json_str, "json", theme="monokai", line_numbers=False)

    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/bold]", border_style="cyan"))
    else:
        console.print(syntax)


def print_schema(schema: Dict, title: str = "Schema") -> None:
    print_json(schema, title)


def print_validation_errors(errors: List[SchemaViolation]) -> None:
    if not errors:
        return

    console.print()
    console.print("[bold red]Validation Errors:[/bold red]")
    for error in errors:
        console.print(f"  [red]•[/red] At {error.path}: {error.message}")
        console.print(f"    [dim]expected {error.expected!r}, got {error.actual!r}[/dim]")
    console.print()


def print_thinking(text: str) -> None:
    """Print the model's thinking block in a dimmed panel."""
    if not text.strip():
        return
    console.print(Panel(text.strip(), title="[bold]Thinking[/bold]", border_style="dim", style="dim"))


def print_stream_chunk(chunk: str) -> None:
    """Print a streamed chunk without a newline or markup parsing."""
    console.print(chunk, end="", markup=False, highlight=False)


def print_metrics(metrics: Optional[PerformanceMetrics], title: str = "Performance") -> None:
    """
    Print a metrics snapshot as a table.

    Args:
        metrics: Snapshot from PerformanceMonitor.current_metrics
        title: Table title
    """
    if metrics is None:
        return

    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", style="white", width=24)

    table.add_row("Tokens Generated", str(metrics.tokens_generated))
    table.add_row("Tokens/Second", f"{metrics.tokens_per_second:.1f}")
    table.add_row("Inference Time", f"{metrics.inference_time * 1000:.0f} ms")
    table.add_row("Time/Token", f"{metrics.average_time_per_token * 1000:.1f} ms")
    table.add_row("Context Length", str(metrics.context_length))
    table.add_row("Memory", _format_bytes(metrics.memory_usage))
    table.add_row("Peak Memory", _format_bytes(metrics.peak_memory_usage))

    if metrics.context_prep_time is not None:
        table.add_row("Prompt Decode", f"{metrics.context_prep_time * 1000:.0f} ms")
    if metrics.model_load_time is not None:
        table.add_row("Model Load", f"{metrics.model_load_time:.2f} s", style="yellow")

    console.print()
    console.print(table)
    console.print()


def print_embedding(vector: List[float], preview: int = 8) -> None:
    """Print the size, norm and first values of an embedding."""
    norm = sum(v * v for v in vector) ** 0.5
    head = ", ".join(f"{v:.4f}" for v in vector[:preview])
    suffix = ", ..." if len(vector) > preview else ""

    table = Table(title="Embedding", show_header=False)
    table.add_column("Field", style="cyan", width=12)
    table.add_column("Value", style="white")
    table.add_row("Dimensions", str(len(vector)))
    table.add_row("L2 Norm", f"{norm:.4f}")
    table.add_row("Values", f"[{head}{suffix}]")

    console.print()
    console.print(table)
    console.print()


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def create_progress_spinner() -> Progress:
    """Progress context manager showing a spinner and a description."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    )


def print_separator() -> None:
    console.print("[dim]" + "─" * 70 + "[/dim]")


def print_model_loading(model_id: str, backend: Optional[str]) -> None:
    console.print()
    print_info(f"Loading model: [bold]{model_id}[/bold]")
    print_info(f"Backend: [bold]{backend or 'auto'}[/bold]")
    print_info(f"Host: [bold]{describe_platform()}[/bold]")
    console.print()
