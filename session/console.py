"""Terminal user interface.

States and commands talk to the user only through the ``UserInterface``
protocol, so tests can drive a session with scripted answers. ``ConsoleUI``
is the rich-based implementation used by the CLI.
"""

import asyncio
from typing import Protocol

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from events.bus import EventBus
from events.types import EventType, SessionEvent

EXIT_COMMAND = "/exit"


class UserInterface(Protocol):
    """Everything a session needs from its user."""

    async def ask(self, prompt: str) -> str: ...

    async def confirm(self, question: str, default: bool = True) -> bool: ...

    async def choose(self, question: str, choices: list[str]) -> str: ...

    async def approve(self, question: str, detail: str = "") -> bool: ...

    def render_markdown(self, text: str) -> None: ...

    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def stream_chunk(self, chunk: str) -> None: ...

    def end_stream(self) -> None: ...


class ConsoleUI:
    """rich-based terminal interface.

    Blocking ``console.input`` calls run in the default executor so the
    event loop stays responsive while the user types.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._streaming = False

    async def _input(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: self.console.input(prompt).strip())

    async def ask(self, prompt: str) -> str:
        """Read one line. EOF and Ctrl-C are read as ``/exit``."""
        try:
            return await self._input(f"[bold cyan]{prompt}:[/bold cyan] ")
        except (EOFError, KeyboardInterrupt):
            self.console.print()
            return EXIT_COMMAND

    async def confirm(self, question: str, default: bool = True) -> bool:
        hint = "Y/n" if default else "y/N"
        while True:
            try:
                answer = (await self._input(f"[bold]{question}[/bold] [dim]({hint})[/dim] ")).lower()
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return False
            if not answer:
                return default
            if answer in ("y", "yes"):
                return True
            if answer in ("n", "no"):
                return False
            self.console.print("[yellow]Please answer y or n[/yellow]")

    async def choose(self, question: str, choices: list[str]) -> str:
        """Numbered menu; returns the chosen label. EOF picks the last choice."""
        self.console.print(f"\n[bold]{question}[/bold]")
        for i, choice in enumerate(choices, 1):
            self.console.print(f"  [cyan]{i}[/cyan]. {choice}")
        while True:
            try:
                answer = await self._input(f"[bold]Choice[/bold] [dim](1-{len(choices)})[/dim] ")
            except (EOFError, KeyboardInterrupt):
                self.console.print()
                return choices[-1]
            if answer.isdigit() and 1 <= int(answer) <= len(choices):
                return choices[int(answer) - 1]
            self.console.print(f"[yellow]Enter a number between 1 and {len(choices)}[/yellow]")

    async def approve(self, question: str, detail: str = "") -> bool:
        """Show what a tool wants to do and ask before doing it."""
        self.end_stream()
        if detail:
            self.console.print(Panel.fit(Syntax(detail, "diff", word_wrap=True), title=question))
        return await self.confirm(question, default=False)

    def render_markdown(self, text: str) -> None:
        self.end_stream()
        self.console.print(Markdown(text))

    def info(self, message: str) -> None:
        self.end_stream()
        self.console.print(f"[dim]{message}[/dim]")

    def success(self, message: str) -> None:
        self.end_stream()
        self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        self.end_stream()
        self.console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        self.end_stream()
        self.console.print(f"[red]{message}[/red]")

    def stream_chunk(self, chunk: str) -> None:
        if not self._streaming:
            self._streaming = True
            self.console.print("\n[bold cyan]Assistant:[/bold cyan] ", end="")
        self.console.print(chunk, end="", markup=False, highlight=False)

    def end_stream(self) -> None:
        if self._streaming:
            self._streaming = False
            self.console.print("\n")

    def attach(self, event_bus: EventBus) -> None:
        """Print a "wrote <path>" line for every file a tool changes."""

        def _on_file_changed(event: SessionEvent) -> None:
            self.info(f"wrote {event.data.get('path')}")

        event_bus.add_listener(_on_file_changed, {EventType.FILE_CHANGED})
