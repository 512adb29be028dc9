"""Daemon command for running routines on their schedules."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from cody_routines.cli.console import fail
from cody_routines.cli.runtime import resolve_routines_dir, resolve_settings
from cody_routines.config import RoutinesSettings
from cody_routines.errors import ConnectivityError
from cody_routines.logging import configure_logging


def register(app: typer.Typer) -> None:
    """Register the start command."""

    @app.command()
    def start(
        ctx: typer.Context,
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
        watch: Annotated[
            bool,
            typer.Option(
                "--watch",
                "-w",
                help="Watch routines directory for changes",
            ),
        ] = False,
    ) -> None:
        """Start the routines daemon."""
        log_level = (ctx.obj or {}).get("log_level")
        configure_logging(log_level, use_rich=True)

        settings = resolve_settings(server)
        try:
            asyncio.run(_run_daemon(resolve_routines_dir(routines), settings, watch))
        except ConnectivityError as e:
            fail(str(e))
        except KeyboardInterrupt:
            pass


async def _run_daemon(
    routines_dir: Path, settings: RoutinesSettings, watch: bool
) -> None:
    from cody_routines.daemon import Daemon

    daemon = Daemon(routines_dir, settings, watch=watch)
    await daemon.start()
    await daemon.run_forever()
