"""Template variables for routine messages.

Routine text may reference ``{{variable}}`` placeholders that are resolved at
firing time against the current wall clock of the routine's timezone.

Available variables:
- date: 2026-01-12
- time: 09:00 (24h)
- datetime: 2026-01-12T09:00:00.123456+00:00
- year, month, day: 2026, 01, 12
- week: ISO week number, two digits
- weekday: Monday

Notifications additionally see ``session_id`` and ``routine_name``.
"""

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cody_routines.config.paths import get_system_timezone

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class TemplateContext:
    """Time-derived values available for placeholder substitution."""

    date: str
    time: str
    datetime: str
    year: str
    month: str
    day: str
    week: str
    weekday: str

    @classmethod
    def at(cls, moment: datetime) -> "TemplateContext":
        """Build a context for a specific instant in its own timezone."""
        return cls(
            date=moment.strftime("%Y-%m-%d"),
            time=moment.strftime("%H:%M"),
            datetime=moment.isoformat(),
            year=f"{moment.year:04d}",
            month=f"{moment.month:02d}",
            day=f"{moment.day:02d}",
            week=f"{moment.isocalendar().week:02d}",
            weekday=moment.strftime("%A"),
        )

    def as_dict(self) -> dict[str, str]:
        return asdict(self)

    def extend(self, **extra: str) -> dict[str, str]:
        """Return the context as a mapping with additional keys."""
        return {**self.as_dict(), **extra}


def resolve_timezone(timezone: str | None) -> ZoneInfo | None:
    """Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is not a known timezone.
    """
    if not timezone:
        return None
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise ValueError(f"Unknown timezone: {timezone}") from e


def local_timezone() -> tzinfo:
    """The system timezone, as a ZoneInfo whenever its name can be found.

    A named zone follows DST transitions. When the name is unknown the current
    fixed UTC offset is the best available answer.
    """
    name = get_system_timezone()
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            pass
    local = datetime.now().astimezone().tzinfo
    assert local is not None
    return local


def now_in(timezone: str | None = None) -> datetime:
    """Current instant as an aware datetime in ``timezone`` (or local time)."""
    return datetime.now(resolve_timezone(timezone) or local_timezone())


def build_context(timezone: str | None = None) -> TemplateContext:
    """Build a template context from the current time."""
    return TemplateContext.at(now_in(timezone))


def substitute(template: str, context: Mapping[str, str]) -> str:
    """Replace ``{{key}}`` placeholders with values from context.

    Unknown keys are left as-is, braces included. Replacement happens in a
    single pass: values that themselves contain ``{{...}}`` are not expanded.
    """

    def replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in context:
            return str(context[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace, template)


def process_template(text: str, timezone: str | None = None) -> str:
    """Substitute time variables into text using a fresh context."""
    return substitute(text, build_context(timezone).as_dict())
