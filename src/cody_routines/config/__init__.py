"""Configuration module."""

from cody_routines.config.loader import (
    find_routine,
    load_routine_file,
    load_routines,
    load_settings,
)
from cody_routines.config.models import (
    Action,
    LoadedRoutine,
    LoadResult,
    NewSessionAction,
    NotifyConfig,
    RoutineConfig,
    RoutineError,
    RoutinesSettings,
    ScheduleTrigger,
    Triggers,
)
from cody_routines.config.paths import get_config_path, get_home

__all__ = [
    "Action",
    "LoadResult",
    "LoadedRoutine",
    "NewSessionAction",
    "NotifyConfig",
    "RoutineConfig",
    "RoutineError",
    "RoutinesSettings",
    "ScheduleTrigger",
    "Triggers",
    "find_routine",
    "get_config_path",
    "get_home",
    "load_routine_file",
    "load_routines",
    "load_settings",
]
