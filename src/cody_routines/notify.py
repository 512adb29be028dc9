"""Push notifications via the external relay executable.

The relay is invoked as ``<relay> notify <title> <body> [--deeplink <url>]``
and signals success with exit code 0.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from cody_routines.config.models import DEFAULT_RELAY_COMMAND

logger = logging.getLogger(__name__)

DEFAULT_RELAY_TIMEOUT = 30.0


class RelayStatus(Enum):
    """Outcome of a relay invocation."""

    SENT = "sent"
    NOT_FOUND = "not_found"  # Relay executable missing from PATH
    FAILED = "failed"  # Relay ran and exited non-zero
    ERROR = "error"  # Could not start or timed out


@dataclass(frozen=True)
class RelayResult:
    status: RelayStatus
    exit_code: int | None = None
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.status is RelayStatus.SENT


def build_relay_args(
    title: str, body: str, deeplink: str | None = None
) -> list[str]:
    args = ["notify", title, body]
    if deeplink:
        args.extend(["--deeplink", deeplink])
    return args


async def run_relay(
    title: str,
    body: str,
    deeplink: str | None = None,
    *,
    command: str = DEFAULT_RELAY_COMMAND,
    timeout: float = DEFAULT_RELAY_TIMEOUT,
) -> RelayResult:
    """Invoke the relay and classify the outcome. Never raises."""
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *build_relay_args(title, body, deeplink),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return RelayResult(RelayStatus.NOT_FOUND)
    except OSError as e:
        return RelayResult(RelayStatus.ERROR, stderr=str(e))

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        return RelayResult(RelayStatus.ERROR, stderr=f"timed out after {timeout}s")

    stderr_text = stderr.decode("utf-8", errors="replace").strip()
    if process.returncode == 0:
        return RelayResult(RelayStatus.SENT, exit_code=0, stderr=stderr_text)
    return RelayResult(
        RelayStatus.FAILED, exit_code=process.returncode, stderr=stderr_text
    )


async def send_notification(
    title: str,
    body: str,
    deeplink: str | None = None,
    *,
    command: str = DEFAULT_RELAY_COMMAND,
    timeout: float = DEFAULT_RELAY_TIMEOUT,
) -> bool:
    """Send a push notification.

    Returns:
        True only if the relay exited with status 0.
    """
    result = await run_relay(
        title, body, deeplink, command=command, timeout=timeout
    )

    if result.status is RelayStatus.SENT:
        logger.info("notification_sent", extra={"notify.title": title})
    elif result.status is RelayStatus.NOT_FOUND:
        logger.error(
            "notification_relay_not_found", extra={"notify.relay": command}
        )
    elif result.status is RelayStatus.FAILED:
        logger.error(
            "notification_relay_failed",
            extra={
                "notify.relay": command,
                "process.exit_code": result.exit_code,
                "error.message": result.stderr,
            },
        )
    else:
        logger.error(
            "notification_relay_error",
            extra={"notify.relay": command, "error.message": result.stderr},
        )

    return result.ok
