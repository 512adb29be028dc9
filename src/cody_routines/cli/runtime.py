"""Shared helpers for CLI entrypoints."""

from pathlib import Path

import typer

from cody_routines.cli.console import fail
from cody_routines.config import RoutinesSettings, load_settings
from cody_routines.errors import ConfigError


def resolve_settings(server_url: str | None = None) -> RoutinesSettings:
    """Load settings and apply CLI overrides, exiting on invalid config."""
    try:
        settings = load_settings()
    except ConfigError as e:
        fail(str(e))
    if server_url:
        settings = settings.model_copy(update={"server_url": server_url})
    return settings


def resolve_routines_dir(path: Path) -> Path:
    return path.expanduser().resolve()
