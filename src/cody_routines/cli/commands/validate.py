"""Validate routine definition files."""

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape

from cody_routines.cli.console import console, fail, success, warning
from cody_routines.cli.runtime import resolve_routines_dir
from cody_routines.config import load_routines
from cody_routines.scheduling import build_jobs


def register(app: typer.Typer) -> None:
    """Register the validate command."""

    @app.command()
    def validate(
        routines: Annotated[
            Path,
            typer.Option(
                "--routines",
                "-r",
                help="Path to routines directory",
            ),
        ],
    ) -> None:
        """Validate all routine files.

        Exits non-zero when no routine files exist or any file is invalid.
        Schedule expressions are checked as well as the file structure.
        """
        directory = resolve_routines_dir(routines)
        console.print(f"Validating routines in {directory}...")

        result = load_routines(directory)
        problems = [(e.file, e.error) for e in result.errors]
        for job_error in build_jobs(result.routines).errors:
            problems.append((job_error.routine_id, str(job_error.error)))

        for file, message in problems:
            console.print(f"[red]{escape(file)}:[/red] {escape(message)}")

        if not result.routines and not result.errors:
            warning("No routine files found")
            raise typer.Exit(1)

        if problems:
            fail(f"Validation failed: {len(problems)} invalid routine(s)")

        success(f"Validation complete: {len(result.routines)} valid routine(s)")
