"""Command-line entry point for codeplanner.

Usage:
    codeplanner                               # interactive session
    codeplanner "Add a /health endpoint"      # queue a first request
    codeplanner --prompt-file task.md --remote
"""

import asyncio
import sys
from pathlib import Path

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from config import configure_logging, load_settings
from llm.errors import NoLLMAvailableError
from session.console import ConsoleUI
from session.machine import InteractiveSession

console = Console()

logger = structlog.get_logger(__name__)


@click.command()
@click.version_option(version="0.1.0", prog_name="codeplanner")
@click.argument("prompt", required=False)
@click.option(
    "--prompt-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read the first request from a file.",
)
@click.option("--local", "prefer_local", is_flag=True, help="Execute plans with the local LLM tier.")
@click.option("--remote", "prefer_remote", is_flag=True, help="Execute plans with the remote LLM tier.")
@click.option("--provider", help="Provider name to use instead of best-available selection.")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    help="YAML config file (default ~/.codeplanner/config.yaml).",
)
@click.option(
    "--working-dir",
    "-C",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=Path.cwd,
    help="Project root the tools are confined to.",
)
@click.option("--debug", is_flag=True, help="Log at DEBUG level to stderr.")
def cli(
    prompt: str | None,
    prompt_file: Path | None,
    prefer_local: bool,
    prefer_remote: bool,
    provider: str | None,
    config_file: str | None,
    working_dir: Path,
    debug: bool,
) -> None:
    """Plan, execute and validate coding tasks with LLMs."""
    if prefer_local and prefer_remote:
        raise click.UsageError("--local and --remote are mutually exclusive")

    try:
        overrides = {"log_level": "DEBUG"} if debug else {}
        settings = load_settings(config_file, **overrides)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_format)

    if prompt_file is not None:
        prompt = prompt_file.read_text(encoding="utf-8")

    console.print(Panel.fit("[bold cyan]codeplanner[/bold cyan]", subtitle="/help for commands"))

    session = InteractiveSession(
        settings,
        working_dir,
        ConsoleUI(console),
        initial_prompt=prompt,
        provider=provider,
        prefer_local=prefer_local,
        prefer_remote=prefer_remote,
    )
    try:
        metrics = asyncio.run(session.run())
    except NoLLMAvailableError as e:
        logger.error("no_llm_available", tried=e.tried)
        console.print(f"[red]{e}[/red]")
        console.print("Configure a provider in ~/.codeplanner/config.yaml or set its API key.")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[bold]Exiting...[/bold]")
        return

    console.print(
        f"[dim]{metrics.total_llm_calls} LLM calls, {metrics.total_tokens:,} tokens[/dim]"
    )


if __name__ == "__main__":
    cli()
