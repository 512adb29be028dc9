"""Console output shared by the CLI commands."""

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cody_routines.config.models import RoutineError

console = Console()


def error(msg: str) -> None:
    console.print(f"[red]{escape(msg)}[/red]")


def warning(msg: str) -> None:
    console.print(f"[yellow]{escape(msg)}[/yellow]")


def success(msg: str) -> None:
    console.print(f"[green]{escape(msg)}[/green]")


def dim(msg: str) -> None:
    console.print(f"[dim]{escape(msg)}[/dim]")


def fail(msg: str) -> NoReturn:
    """Print an error and exit the command with status 1."""
    error(msg)
    raise typer.Exit(1)


def print_routine_errors(
    errors: Iterable[RoutineError], heading: str | None = None
) -> None:
    """Print one line per invalid routine file, under an optional heading."""
    errors = list(errors)
    if not errors:
        return
    if heading:
        console.print()
        error(f"{heading} ({len(errors)}):")
    for routine_error in errors:
        console.print(f"  {routine_error.file}: {routine_error.error}", markup=False)


def routines_table(title: str = "Routines") -> Table:
    """Empty table with the columns used to describe scheduled routines."""
    table = Table(title=title)
    table.add_column("ID", style="dim", max_width=24)
    table.add_column("Name", style="cyan")
    table.add_column("Schedule", style="green")
    table.add_column("Timezone")
    table.add_column("Action")
    table.add_column("Next Run")
    return table


def format_countdown(next_fire: datetime | None, now: datetime | None = None) -> str:
    """Format a countdown string such as "in 2h 5m" for a fire time."""
    if next_fire is None:
        return "[dim]?[/dim]"

    now = now or datetime.now(UTC)
    if next_fire <= now:
        return "[green]now[/green]"

    total_seconds = int((next_fire - now).total_seconds())
    if total_seconds < 60:
        return f"in {total_seconds}s"

    total_minutes = total_seconds // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"

    hours, minutes = divmod(total_minutes, 60)
    if hours < 24:
        return f"in {hours}h {minutes}m" if minutes else f"in {hours}h"

    days, hours = divmod(hours, 24)
    return f"in {days}d {hours}h" if hours else f"in {days}d"
