"""Progress and error reporting collaborators.

Components never print. They report through three injected callables:

- ``ProgressSink(percentage, message)``: milestone updates (0-100).
- ``ErrorSink(message)``: user-facing fatal error text.
- ``InteractivePredicate()``: True when an interactive front end owns the
  process and errors must be returned instead of exiting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from rich.console import Console
from rich.markup import escape

ProgressSink = Callable[[float, str], None]
ErrorSink = Callable[[str], None]
InteractivePredicate = Callable[[], bool]


def _no_progress(percentage: float, message: str) -> None:
    return None


def _no_error(message: str) -> None:
    return None


def _never() -> bool:
    return False


@dataclass(frozen=True)
class Sinks:
    progress: ProgressSink = _no_progress
    error: ErrorSink = _no_error
    interactive: InteractivePredicate = _never


def null_sinks() -> Sinks:
    """Discard all reports; non-interactive."""
    return Sinks()


def console_sinks(console: Console | None = None, interactive: bool = False) -> Sinks:
    """Sinks that print to a rich console.

    Empty progress messages (percentage-only milestones) are not printed.
    """
    out = console or Console()
    err = Console(stderr=True) if console is None else console

    def progress(percentage: float, message: str) -> None:
        if message:
            out.print(f"[dim][{percentage:>3.0f}%][/dim] {escape(message)}")

    def error(message: str) -> None:
        err.print(f"[red]Error:[/red] {escape(message)}")

    return Sinks(progress=progress, error=error, interactive=lambda: interactive)
