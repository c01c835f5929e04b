"""Shared Rich console and output helpers for concert-binder.

The CLI installs one ``Console`` at startup; pipeline code reports
progress through ``make_progress`` and never prints directly.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

# Set by the CLI callback; tests and library callers get a stderr default.
_console: Console | None = None


def get_console() -> Console:
    """Get the global console, creating a default one outside the CLI."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console


@contextmanager
def make_progress(transient: bool = True) -> Iterator[Progress]:
    """Progress bar for per-entity loops (artists, venues).

    Example:
        with make_progress() as progress:
            task = progress.add_task("Enriching artists", total=len(names))
            for name in names:
                ...
                progress.advance(task)
    """
    columns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    ]
    with Progress(*columns, transient=transient, console=get_console()) as progress:
        yield progress


def print(*args: Any, **kwargs: Any) -> None:
    get_console().print(*args, **kwargs)


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {escape(message)}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {escape(message)}[/yellow]")


def print_success(message: str) -> None:
    get_console().print(f"[green]{escape(message)}[/green]")


def print_json(data: Any) -> None:
    """Machine-readable output for ``--output json``; goes to stdout."""
    Console(highlight=False, soft_wrap=True).print(
        json.dumps(data, indent=2, ensure_ascii=False, default=str), markup=False
    )


def counts_table(title: str, counts: Mapping[str, Any]) -> Table:
    """Two-column table for a run summary."""
    table = Table(title=title, show_header=False, title_justify="left")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in counts.items():
        table.add_row(key.replace("_", " "), str(value))
    return table


def print_counts(title: str, counts: Mapping[str, Any]) -> None:
    get_console().print(counts_table(title, counts))


def print_lines(title: str, lines: Iterable[str]) -> None:
    lines = list(lines)
    if not lines:
        return
    console = get_console()
    console.print(f"\n[bold]{title}[/bold]")
    for line in lines:
        console.print(f"  {line}", markup=False)
