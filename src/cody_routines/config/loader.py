"""Loading routine definitions from YAML and settings from TOML."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from cody_routines.config.models import (
    LoadedRoutine,
    LoadResult,
    RoutineConfig,
    RoutineError,
    RoutinesSettings,
)
from cody_routines.config.paths import get_config_path
from cody_routines.errors import ConfigError

logger = logging.getLogger(__name__)

ROUTINE_SUFFIXES = (".yaml", ".yml")

# Environment variables that override settings file values
ENV_OVERRIDES = {
    "CODY_ROUTINES_SERVER_URL": "server_url",
    "CODY_ROUTINES_RELAY": "relay_command",
}


def format_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic error into ``path: message; path: message``."""
    messages = []
    for issue in error.errors():
        path = ".".join(str(part) for part in issue["loc"])
        message = issue["msg"].removeprefix("Value error, ")
        messages.append(f"{path}: {message}" if path else message)
    return "; ".join(messages)


def routine_id_for(path: Path) -> str:
    """Derive a routine id from its filename."""
    return path.stem


def load_routine_file(path: Path) -> LoadedRoutine | RoutineError:
    """Load a single routine file.

    Returns either the loaded routine or an error, never raises for bad
    content.
    """
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        config = RoutineConfig.model_validate(raw)
    except ValidationError as e:
        return RoutineError(file=path.name, error=format_validation_error(e))
    except (OSError, yaml.YAMLError) as e:
        return RoutineError(file=path.name, error=str(e))

    return LoadedRoutine(id=routine_id_for(path), file_path=path, config=config)


def is_routine_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() in ROUTINE_SUFFIXES


def find_routine_files(directory: Path) -> list[Path]:
    """Find routine definition files below a directory, in stable order."""
    if not directory.is_dir():
        return []
    return sorted(
        p
        for p in directory.rglob("*")
        if p.is_file() and is_routine_file(p)
    )


def load_routines(directory: Path) -> LoadResult:
    """Load all routines from a directory.

    Disabled routines are skipped silently; invalid files are collected as
    errors and never prevent the remaining files from loading.
    """
    result = LoadResult()
    seen: dict[str, Path] = {}
    for path in find_routine_files(directory):
        loaded = load_routine_file(path)
        if isinstance(loaded, RoutineError):
            result.errors.append(loaded)
            continue
        if not loaded.config.enabled:
            logger.debug("routine_disabled", extra={"routine.id": loaded.id})
            continue
        if loaded.id in seen:
            result.errors.append(
                RoutineError(
                    file=path.name,
                    error=f"Duplicate routine id '{loaded.id}' "
                    f"(already defined in {seen[loaded.id]})",
                )
            )
            continue
        seen[loaded.id] = path
        result.routines.append(loaded)

    logger.debug(
        "routines_loaded",
        extra={
            "routines.directory": str(directory),
            "routines.count": len(result.routines),
            "routines.errors": len(result.errors),
        },
    )
    return result


def find_routine(routines: list[LoadedRoutine], name: str) -> LoadedRoutine | None:
    """Find a routine by id or display name."""
    for routine in routines:
        if routine.id == name or routine.config.name == name:
            return routine
    return None


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for env_var, key in ENV_OVERRIDES.items():
        if value := os.environ.get(env_var):
            raw[key] = value
    return raw


def load_settings(path: Path | None = None) -> RoutinesSettings:
    """Load daemon settings.

    Args:
        path: Explicit settings file. If None, the default location is used
            when it exists; a missing default file yields default settings.

    Raises:
        ConfigError: If the file is missing (explicit path) or invalid.
    """
    raw: dict[str, Any] = {}
    config_path = Path(path).expanduser() if path is not None else get_config_path()

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid settings file {config_path}: {e}") from e
    elif path is not None:
        raise ConfigError(f"Settings file not found: {config_path}")

    try:
        return RoutinesSettings.model_validate(_apply_env_overrides(raw))
    except ValidationError as e:
        raise ConfigError(
            f"Invalid settings in {config_path}: {format_validation_error(e)}"
        ) from e
