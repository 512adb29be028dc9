"""Centralized path management for cody-routines.

Settings live under a single base directory that can be overridden with the
CODY_ROUTINES_HOME environment variable (default: ~/.cody-routines).
"""

import os
from pathlib import Path

ENV_VAR = "CODY_ROUTINES_HOME"


def get_home() -> Path:
    """Get the base directory for cody-routines state.

    Resolution order:
    1. CODY_ROUTINES_HOME environment variable (if set)
    2. ~/.cody-routines
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".cody-routines"


def get_config_path() -> Path:
    """Get the default settings file path."""
    return get_home() / "config.toml"


def get_system_timezone() -> str | None:
    """Detect the system's IANA timezone name.

    Resolution order:
    1. TZ environment variable (if set)
    2. /etc/timezone file (Debian/Ubuntu)
    3. /etc/localtime symlink target (most Linux distros, macOS)

    Returns None when no name can be found, e.g. when /etc/localtime is a
    plain copy rather than a symlink.
    """
    if tz := os.environ.get("TZ"):
        # POSIX allows a leading colon: TZ=":America/New_York"
        return tz.removeprefix(":")

    try:
        tz = Path("/etc/timezone").read_text().strip()
        if tz:
            return tz
    except OSError:
        pass

    try:
        link = Path("/etc/localtime").resolve()
        parts = str(link).split("zoneinfo/")
        if len(parts) > 1:
            return parts[1]
    except OSError:
        pass

    return None
