"""Centralized logging configuration for cody-routines.

All entry points (CLI commands, the daemon) call configure_logging() early.
Execution isolates run in their own process and forward records over their
message channel instead (see cody_routines.scheduling.isolate).

Logging Levels:
- DEBUG: Timer arithmetic, file watcher events, HTTP request details
- INFO: Loaded routines, scheduler transitions, isolate progress
- WARNING: Skipped definitions, malformed model strings, empty schedules
- ERROR: Failed firings, relay failures, connectivity problems
"""

import logging
import os
import re
from dataclasses import dataclass, field

ENV_LOG_LEVEL = "CODY_ROUTINES_LOG_LEVEL"

# Each pattern captures the secret in group 1; the surrounding text is kept.
SECRET_PATTERNS: tuple[str, ...] = (
    # Provider API keys and GitHub tokens
    r"\b((?:sk|ghp|github_pat)[-_][A-Za-z0-9_-]{20,})\b",
    # KEY=value style assignments, e.g. OPENAI_API_KEY=... or DB_PASSWORD: ...
    r"\b[A-Z0-9_]+(?:KEY|TOKEN|SECRET|PASSWORD|PASSWD)\s*[=:]\s*([^\s\"']{8,})",
    r"\bBearer\s+([A-Za-z0-9._\-+=]{20,})\b",
    # Credentials passed in deeplink or webhook query strings
    r"[?&](?:token|key|secret|sig|signature)=([^&\s#]{8,})",
)

# Secrets shorter than this are replaced entirely instead of showing the ends
_MIN_PARTIAL = 12


def _mask(secret: str) -> str:
    if len(secret) < _MIN_PARTIAL:
        return "***"
    return f"{secret[:4]}...{secret[-4:]}"


@dataclass(frozen=True)
class SecretRedactor:
    """Masks credentials in log text.

    Routine messages and notification deeplinks are user-authored and can
    embed tokens, so every record that reaches a handler is passed through a
    redactor first.
    """

    patterns: tuple[re.Pattern[str], ...] = field(
        default_factory=lambda: tuple(
            re.compile(p, re.IGNORECASE) for p in SECRET_PATTERNS
        )
    )
    enabled: bool = True

    def redact(self, text: str) -> str:
        if not self.enabled:
            return text
        for pattern in self.patterns:
            text = pattern.sub(self._replace, text)
        return text

    @staticmethod
    def _replace(match: re.Match[str]) -> str:
        secret = match.group(1)
        if "..." in secret:
            return match.group(0)
        start, end = match.span(1)
        offset = match.start()
        full = match.group(0)
        return full[: start - offset] + _mask(secret) + full[end - offset :]


_redactor = SecretRedactor()


def redact(text: str) -> str:
    """Redact secrets using the module-level redactor."""
    return _redactor.redact(text)


# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "component",
    "structured",
}


def record_extras(record: logging.LogRecord) -> dict[str, object]:
    """Return the ``extra={...}`` fields attached to a record."""
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def format_record_text(record: logging.LogRecord) -> str:
    """Render a record as ``message key=value ...`` with secrets redacted."""
    text = record.getMessage()
    extras = record_extras(record)
    if extras:
        pairs = " ".join(f"{key}={value}" for key, value in extras.items())
        text = f"{text} {pairs}"
    return redact(text)


class ComponentFormatter(logging.Formatter):
    """Formatter that extracts component name from logger path.

    Converts full module paths to short component names:
    - cody_routines.scheduling.scheduler -> scheduling
    - cody_routines.daemon -> daemon
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = record.name.split(".")
        if len(parts) >= 2 and parts[0] == "cody_routines":
            record.component = parts[1]
        else:
            record.component = parts[0]
        record.structured = format_record_text(record)
        return super().format(record)


# Third-party loggers that are too noisy at INFO level
NOISY_LOGGERS = [
    "httpx",
    "httpcore",
]


def resolve_level(level: str | None) -> int:
    """Resolve a level name, falling back to the environment, then INFO."""
    if level is None:
        level = os.environ.get(ENV_LOG_LEVEL, "INFO")
    level = level.upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        level = "INFO"
    return getattr(logging, level)


def configure_logging(level: str | None = None, use_rich: bool = False) -> None:
    """Configure logging for cody-routines.

    Call this once at application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
            If None, uses CODY_ROUTINES_LOG_LEVEL env var or INFO.
        use_rich: Use Rich handler for colorful output (daemon mode).
    """
    log_level = resolve_level(level)

    handler: logging.Handler
    if use_rich:
        from rich.logging import RichHandler

        handler = RichHandler(
            rich_tracebacks=False,
            show_path=False,
            show_time=True,
            markup=False,
        )
        handler.setFormatter(ComponentFormatter("%(component)s | %(structured)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(
            ComponentFormatter(
                "%(asctime)s | %(levelname)-8s | %(component)s | %(structured)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
