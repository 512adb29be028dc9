"""Run a single routine immediately."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from cody_routines.cli.console import console, dim, error, fail, success, warning
from cody_routines.cli.runtime import resolve_routines_dir, resolve_settings
from cody_routines.config import find_routine, load_routines
from cody_routines.errors import RemoteAPIError
from cody_routines.scheduling import (
    ExecutionRequest,
    perform_action,
    render_new_session,
)
from cody_routines.scheduling.isolate import (
    ActionOutcome,
    default_client_factory,
    default_notifier,
)


def register(app: typer.Typer) -> None:
    """Register the run command."""

    @app.command()
    def run(
        name: Annotated[
            str,
            typer.Argument(help="Routine id (filename) or name"),
        ],
        routines: Annotated[
            Path,
            typer.Option(
                "--routines",
                "-r",
                help="Path to routines directory",
            ),
        ],
        server: Annotated[
            str | None,
            typer.Option(
                "--server",
                "-s",
                help="OpenCode server URL (default: http://localhost:4096)",
            ),
        ] = None,
        dry_run: Annotated[
            bool,
            typer.Option(
                "--dry-run",
                help="Show what would be sent without executing",
            ),
        ] = False,
    ) -> None:
        """Run a specific routine immediately.

        Examples:
            cody-routines run daily-digest -r ./routines --dry-run
            cody-routines run "Daily digest" -r ./routines
        """
        result = load_routines(resolve_routines_dir(routines))
        for routine_error in result.errors:
            warning(f"Skipped {routine_error.file}: {routine_error.error}")

        routine = find_routine(result.routines, name)
        if routine is None:
            error(f"Routine not found: {name}")
            if result.routines:
                console.print("Available routines:")
                for r in result.routines:
                    console.print(f"  - {r.id} ({r.name})")
            else:
                dim("No routines available")
            raise typer.Exit(1)

        settings = resolve_settings(server)
        request = ExecutionRequest.for_routine(routine, settings)
        console.print(f"Running routine: [bold]{routine.name}[/bold]")

        if dry_run:
            _print_dry_run(request)
            return

        try:
            outcome = asyncio.run(_execute(request))
        except (RemoteAPIError, ValueError) as e:
            fail(f"Routine failed: {e}")

        if outcome.notified is False:
            warning("Notification could not be delivered")
        success(f"Routine completed successfully (session {outcome.session_id})")


def _print_dry_run(request: ExecutionRequest) -> None:
    action = request.action
    try:
        title, message = render_new_session(action, request.timezone)
    except ValueError as e:
        fail(str(e))

    console.print("\n[yellow][DRY RUN][/yellow] Would create session with:\n")
    console.print(f"  Title: {title or '(none)'}", markup=False)
    console.print(f"  Model: {action.model or '(default)'}", markup=False)
    console.print(f"  Agent: {action.agent or '(default)'}", markup=False)
    console.print("  Message:\n")
    for line in message.splitlines():
        console.print(f"    {line}", markup=False, highlight=False)
    console.print()


async def _execute(request: ExecutionRequest) -> ActionOutcome:
    async with default_client_factory(request) as client:
        return await perform_action(request, client, default_notifier(request))
