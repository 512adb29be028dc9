"""Configuration models using Pydantic.

Two families live here: the routine definition schema (one YAML file per
routine) and the daemon settings (optional TOML file plus environment).
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_SERVER_URL = "http://localhost:4096"
DEFAULT_RELAY_COMMAND = "opencody-relay"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ScheduleTrigger(_Frozen):
    """Recurring schedule: a cron expression or a recurring phrase."""

    when: str = Field(min_length=1)
    timezone: str | None = None  # IANA name; system-local when omitted


class Triggers(_Frozen):
    """Conditions that fire a routine. Only schedules exist today."""

    schedule: ScheduleTrigger | None = None

    @model_validator(mode="after")
    def _require_one(self) -> "Triggers":
        if all(value is None for value in self.__dict__.values()):
            raise ValueError("At least one trigger must be defined")
        return self


class NotifyConfig(_Frozen):
    """Push notification sent after a session is created.

    All fields are template strings. ``session_id`` and ``routine_name`` are
    available in addition to the time-derived variables.
    """

    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    deeplink: str | None = None


class NewSessionAction(_Frozen):
    """Start a new remote session and send it a message."""

    type: Literal["new_session"] = "new_session"
    title: str | None = None
    model: str | None = None  # "provider/model"
    agent: str | None = None
    message: str = Field(min_length=1)
    notify: NotifyConfig | None = None


# Tagged by ``type``. Additional action kinds join this alias as an
# ``Annotated[A | B, Field(discriminator="type")]`` union and register a
# handler in cody_routines.scheduling.isolate.ACTION_HANDLERS.
Action = NewSessionAction


class RoutineConfig(_Frozen):
    """A validated routine definition."""

    name: str = Field(min_length=1)
    description: str | None = None
    enabled: bool = True
    triggers: Triggers
    action: Action


class LoadedRoutine(_Frozen):
    """A routine definition together with where it came from."""

    id: str  # Filename without extension, unique within one loaded set
    file_path: Path
    config: RoutineConfig

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def schedule(self) -> ScheduleTrigger | None:
        return self.config.triggers.schedule


class RoutineError(_Frozen):
    """A definition file that failed to load."""

    file: str
    error: str


class LoadResult(BaseModel):
    """Successfully loaded routines and any per-file errors."""

    routines: list[LoadedRoutine] = Field(default_factory=list)
    errors: list[RoutineError] = Field(default_factory=list)


class RoutinesSettings(BaseModel):
    """Daemon settings.

    Values come from $CODY_ROUTINES_HOME/config.toml when present, then from
    environment variables; CLI options override both.
    """

    server_url: str = DEFAULT_SERVER_URL
    relay_command: str = DEFAULT_RELAY_COMMAND
    health_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    relay_timeout: float = Field(default=30.0, gt=0)
    debounce_seconds: float = Field(default=2.0, ge=0)
