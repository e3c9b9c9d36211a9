"""
Rich CLI interface for Polyphony.

Runs comparisons from the terminal, lists models and history, and starts
the API server.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from polyphony import __version__
from polyphony.core.config import Settings, get_settings
from polyphony.core.orchestrator import ComparisonOrchestrator, InvalidSubmissionError
from polyphony.providers.factory import AdapterRegistry, UnknownModelError
from polyphony.realtime.channel import ChannelEvent, ChannelEventName
from polyphony.storage.base import PersistenceError
from polyphony.utils.logging import setup_logging

app = typer.Typer(
    name="polyphony",
    help="Multi-model prompt playground - stream one prompt to many LLMs side by side",
    no_args_is_help=True,
)
console = Console()


def load_settings(config: Optional[Path]) -> Settings:
    """Settings from a YAML file if given, otherwise the environment."""
    if config is not None:
        return Settings.from_yaml(config)
    return get_settings()


class ConsoleSubscriber:
    """Prints session events as one-line status updates."""

    subscriber_id = "cli"

    def __init__(self, console: Console):
        self.console = console

    async def send(self, event: ChannelEvent) -> None:
        data = event.data
        if event.name == ChannelEventName.MODEL_TYPING:
            self.console.print(f"[dim]… {data['model']} is responding[/dim]")
        elif event.name == ChannelEventName.MODEL_COMPLETE:
            if data.get("error") and not data.get("synthetic"):
                self.console.print(f"[red]✗ {data['model']}[/red] [dim]{data['error']}[/dim]")
            else:
                self.console.print(
                    f"[green]✓ {data['model']}[/green] [dim]{data['elapsedMs']:.0f}ms[/dim]"
                )
        elif event.name == ChannelEventName.PROMPT_ERROR:
            self.console.print(f"[red]Error: {data.get('error')}[/red]")


@app.command()
def version():
    """Show version information."""
    console.print(f"[bold cyan]Polyphony[/bold cyan] v{__version__}")


@app.command()
def models(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
):
    """List catalogue models and provider availability."""
    registry = AdapterRegistry.from_settings(load_settings(config))
    available = {m.model_id for m in registry.available_models()}

    table = Table(title="AI Models", show_header=True, header_style="bold magenta")
    table.add_column("Model ID", style="cyan")
    table.add_column("Display Name", style="green")
    table.add_column("Provider", style="yellow")
    table.add_column("Context", justify="right")
    table.add_column("Cost / 1K tokens", justify="right")
    table.add_column("Status")

    for meta in registry.all_models():
        status = "[green]Configured[/green]" if meta.model_id in available else "[red]No API key[/red]"
        table.add_row(
            meta.model_id.value,
            meta.display_name,
            meta.provider.value,
            f"{meta.context_window:,}",
            f"${meta.cost_per_1k_tokens:.6f}",
            status,
        )

    console.print(table)
    console.print(f"\n[dim]{len(available)} of {len(registry.all_models())} models available[/dim]")


@app.command()
def compare(
    prompt: str = typer.Argument(..., help="The prompt to compare"),
    models: Optional[list[str]] = typer.Option(
        None, "--model", "-m", help="Model ID (repeatable); defaults to the configured set"
    ),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session ID"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
):
    """Compare responses from multiple AI models."""
    settings = load_settings(config)
    session_id = session or str(uuid.uuid4())

    async def run():
        orch = ComparisonOrchestrator.from_settings(settings)
        listener = ConsoleSubscriber(console)
        await orch.channel.join(session_id, listener)
        try:
            record = await orch.submit(session_id, prompt, models, submitted_by="cli")
        finally:
            await orch.channel.flush()
            await orch.channel.close()
        return record

    try:
        record = asyncio.run(run())
    except (InvalidSubmissionError, UnknownModelError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except PersistenceError as e:
        console.print(f"[red]Failed to save comparison: {e}[/red]")
        raise typer.Exit(2)

    console.print(f"\n[bold]Comparison ID:[/bold] {record.id}  [dim]session {session_id}[/dim]\n")

    for result in record.results.values():
        if result.success or result.synthetic:
            subtitle = f"[dim]{result.elapsed_ms:.0f}ms"
            if result.estimated_cost_usd is not None:
                subtitle += f" | ${result.estimated_cost_usd:.6f}"
            if result.synthetic:
                subtitle += " | synthetic"
            console.print(Panel(
                Markdown(result.response),
                title=f"[bold cyan]{result.model}[/bold cyan]",
                subtitle=subtitle + "[/dim]",
            ))
        else:
            console.print(Panel(
                f"[red]Error: {result.error}[/red]",
                title=f"[bold red]{result.model}[/bold red]",
            ))
        console.print()

    table = Table(title="Performance Summary", show_header=True)
    table.add_column("Model", style="cyan")
    table.add_column("Latency", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")

    for result in record.successful_results:
        table.add_row(
            result.model,
            f"{result.elapsed_ms:.0f}ms",
            f"{result.tokens.total_tokens:,}" if result.tokens else "-",
            f"${result.estimated_cost_usd:.6f}" if result.estimated_cost_usd is not None else "-",
        )

    console.print(table)
    console.print(
        f"\n[bold]Total:[/bold] {record.total_tokens:,} tokens, "
        f"${record.total_cost_usd:.6f}, avg {record.average_response_time_ms:.0f}ms"
    )


@app.command()
def history(
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Limit to one session"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum comparisons to show"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML settings file"),
):
    """Show stored comparisons, newest first."""
    settings = load_settings(config)
    if settings.storage.backend == "memory":
        console.print(
            "[yellow]Storage backend is 'memory'; set POLYPHONY_STORAGE_BACKEND=json "
            "to keep history between runs.[/yellow]"
        )

    async def run():
        orch = ComparisonOrchestrator.from_settings(settings)
        if session:
            return await orch.session_history(session, limit)
        return await orch.all_history(limit)

    try:
        records = asyncio.run(run())
    except PersistenceError as e:
        console.print(f"[red]Could not read history: {e}[/red]")
        raise typer.Exit(2)

    table = Table(title="Comparison History", show_header=True)
    table.add_column("ID", style="cyan")
    table.add_column("Completed", style="dim")
    table.add_column("Session")
    table.add_column("Prompt")
    table.add_column("Models", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")

    for record in records:
        prompt = record.prompt if len(record.prompt) <= 40 else record.prompt[:37] + "..."
        table.add_row(
            record.id,
            record.completed_at.strftime("%Y-%m-%d %H:%M:%S"),
            record.session_id[:8],
            prompt,
            str(len(record.results)),
            f"{record.total_tokens:,}",
            f"${record.total_cost_usd:.6f}",
        )

    console.print(table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    setup_logging()
    uvicorn.run(
        "polyphony.api.server:app",
        host=host or settings.server.host,
        port=port or settings.server.port,
        reload=reload or settings.server.reload,
    )


@app.command()
def config():
    """Show current configuration."""
    settings = get_settings()

    table = Table(title="Polyphony Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    playground = settings.playground
    table.add_row("Environment", settings.environment)
    table.add_row("Debug", str(settings.debug))
    table.add_row("Log Level", playground.log_level)
    table.add_row("Default Models", ", ".join(m.value for m in playground.default_models))
    table.add_row("Request Timeout", f"{playground.request_timeout_seconds}s")
    table.add_row("Max Retries", str(playground.max_retries))
    table.add_row(
        "Synthetic on Auth Failure",
        ", ".join(p.value for p in playground.synthetic_on_auth_failure) or "off",
    )
    table.add_row("Storage Backend", settings.storage.backend)
    if settings.storage.backend == "json":
        table.add_row("Storage Path", str(settings.storage.json_path))
    table.add_row("Server Host", settings.server.host)
    table.add_row("Server Port", str(settings.server.port))

    console.print(table)

    console.print("\n[bold]Configured Providers:[/bold]")
    for provider in settings.providers.available_providers:
        console.print(f"  [green]✓[/green] {provider.label}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
