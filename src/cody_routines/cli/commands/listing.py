"""List routines and their upcoming runs."""

from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer

from cody_routines.cli.console import (
    console,
    dim,
    format_countdown,
    print_routine_errors,
    routines_table,
)
from cody_routines.cli.runtime import resolve_routines_dir
from cody_routines.config import load_routines
from cody_routines.errors import RecurrenceParseError
from cody_routines.scheduling import build_recurrence


def register(app: typer.Typer) -> None:
    """Register the list command."""

    @app.command("list")
    def list_routines(
        routines: Annotated[
            Path,
            typer.Option(
                "--routines",
                "-r",
                help="Path to routines directory",
            ),
        ],
    ) -> None:
        """List all routines and their schedules."""
        result = load_routines(resolve_routines_dir(routines))

        if not result.routines and not result.errors:
            dim("No routines found.")
            return

        if result.routines:
            table = routines_table()
            for routine in result.routines:
                schedule = routine.schedule
                if schedule is None:
                    when, timezone, next_run = "-", "-", "[dim]-[/dim]"
                else:
                    when = schedule.when
                    timezone = schedule.timezone or "local"
                    try:
                        recurrence = build_recurrence(
                            schedule.when, schedule.timezone
                        )
                        next_run = format_countdown(
                            recurrence.next_after(datetime.now(UTC))
                        )
                    except RecurrenceParseError:
                        next_run = "[red]invalid schedule[/red]"
                table.add_row(
                    routine.id,
                    routine.name,
                    when,
                    timezone,
                    routine.config.action.type,
                    next_run,
                )
            console.print(table)

        print_routine_errors(result.errors, heading="Invalid routines")
