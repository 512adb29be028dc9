"""Main CLI application."""

from typing import Annotated

import typer

from cody_routines.cli.commands import listing, run, start, validate
from cody_routines.logging import configure_logging

app = typer.Typer(
    name="cody-routines",
    help="Schedule routines that start OpenCode sessions automatically",
    no_args_is_help=True,
)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-l",
            help="Log level: DEBUG, INFO, WARNING, ERROR "
            "(default: $CODY_ROUTINES_LOG_LEVEL or INFO)",
        ),
    ] = None,
) -> None:
    """Cody routines: automation for OpenCode sessions."""
    ctx.obj = {"log_level": log_level}
    configure_logging(log_level)


start.register(app)
listing.register(app)
validate.register(app)
run.register(app)


if __name__ == "__main__":
    app()
