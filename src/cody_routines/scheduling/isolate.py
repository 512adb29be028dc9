"""Execution isolate: performs exactly one firing of one routine.

An isolate receives an ExecutionRequest, resolves template variables, starts a
remote session, optionally sends a notification, and reports progress as a
stream of messages ending in exactly one Done. Failures are reported as Error
messages and never raised to the caller.

Done means the isolate finished its local work. The session message is sent
fire-and-forget, so the remote session keeps running independently.

Run as ``python -m cody_routines.scheduling`` the isolate reads the
request as JSON from stdin and writes one JSON message per line to stdout.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from functools import partial
from typing import Any, TextIO

from pydantic import TypeAdapter

from cody_routines.client import OpenCodeClient
from cody_routines.config.models import (
    DEFAULT_RELAY_COMMAND,
    DEFAULT_SERVER_URL,
    Action,
    LoadedRoutine,
    NewSessionAction,
    RoutinesSettings,
)
from cody_routines.logging import NOISY_LOGGERS, format_record_text
from cody_routines.notify import DEFAULT_RELAY_TIMEOUT, send_notification
from cody_routines.templates import build_context, substitute

ISOLATE_MODULE = "cody_routines.scheduling"

# =============================================================================
# Message channel
# =============================================================================


@dataclass(frozen=True)
class Log:
    text: str


@dataclass(frozen=True)
class Error:
    text: str


@dataclass(frozen=True)
class Done:
    pass


IsolateMessage = Log | Error | Done

Emit = Callable[[IsolateMessage], None]


def encode_message(message: IsolateMessage) -> str:
    """Serialize a message as a single JSON line (without newline)."""
    if isinstance(message, Log):
        return json.dumps({"type": "log", "text": message.text})
    if isinstance(message, Error):
        return json.dumps({"type": "error", "text": message.text})
    return json.dumps({"type": "done"})


def decode_message(line: str) -> IsolateMessage:
    """Parse a JSON line produced by encode_message.

    Raises:
        ValueError: If the line is not a known message.
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"Unexpected isolate message: {line!r}")
    kind = data.get("type")
    if kind == "log":
        return Log(str(data.get("text", "")))
    if kind == "error":
        return Error(str(data.get("text", "")))
    if kind == "done":
        return Done()
    raise ValueError(f"Unknown isolate message type: {kind!r}")


class ChannelLogHandler(logging.Handler):
    """Forwards log records from inside an isolate over its message channel.

    INFO and WARNING become Log messages, ERROR and above become Error.
    """

    def __init__(self, emit: Emit, level: int = logging.INFO):
        super().__init__(level)
        self._emit = emit

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = format_record_text(record)
            if record.levelno >= logging.ERROR:
                self._emit(Error(text))
            else:
                self._emit(Log(text))
        except Exception:
            self.handleError(record)


# =============================================================================
# Request
# =============================================================================

_action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


@dataclass(frozen=True)
class ExecutionRequest:
    """By-value snapshot of everything one firing needs."""

    routine_id: str
    name: str
    action: Action
    timezone: str | None = None
    server_url: str = DEFAULT_SERVER_URL
    generation: int = 0
    relay_command: str = DEFAULT_RELAY_COMMAND
    request_timeout: float = 30.0
    relay_timeout: float = DEFAULT_RELAY_TIMEOUT

    @classmethod
    def for_routine(
        cls,
        routine: LoadedRoutine,
        settings: RoutinesSettings,
        generation: int = 0,
    ) -> "ExecutionRequest":
        schedule = routine.schedule
        return cls(
            routine_id=routine.id,
            name=routine.config.name,
            action=routine.config.action,
            timezone=schedule.timezone if schedule else None,
            server_url=settings.server_url,
            generation=generation,
            relay_command=settings.relay_command,
            request_timeout=settings.request_timeout,
            relay_timeout=settings.relay_timeout,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "routine_id": self.routine_id,
                "name": self.name,
                "action": self.action.model_dump(mode="json"),
                "timezone": self.timezone,
                "server_url": self.server_url,
                "generation": self.generation,
                "relay_command": self.relay_command,
                "request_timeout": self.request_timeout,
                "relay_timeout": self.relay_timeout,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "ExecutionRequest":
        data: dict[str, Any] = json.loads(raw)
        data["action"] = _action_adapter.validate_python(data["action"])
        return cls(**data)


# =============================================================================
# Actions
# =============================================================================

ClientFactory = Callable[
    ["ExecutionRequest"], AbstractAsyncContextManager[OpenCodeClient]
]
Notifier = Callable[[str, str, str | None], Awaitable[bool]]


def default_client_factory(request: ExecutionRequest) -> OpenCodeClient:
    return OpenCodeClient(request.server_url, timeout=request.request_timeout)


def default_notifier(request: ExecutionRequest) -> Notifier:
    return partial(
        send_notification,
        command=request.relay_command,
        timeout=request.relay_timeout,
    )


@dataclass(frozen=True)
class ActionOutcome:
    session_id: str | None = None
    # None when no notification was configured
    notified: bool | None = None


ActionHandler = Callable[
    [ExecutionRequest, Any, OpenCodeClient, Notifier], Awaitable[ActionOutcome]
]


def render_new_session(
    action: NewSessionAction, timezone: str | None
) -> tuple[str | None, str]:
    """Resolve the session title and message for the current time."""
    context = build_context(timezone).as_dict()
    title = substitute(action.title, context) if action.title else None
    return title, substitute(action.message, context)


async def _run_new_session(
    request: ExecutionRequest,
    action: NewSessionAction,
    client: OpenCodeClient,
    notifier: Notifier,
) -> ActionOutcome:
    title, message = render_new_session(action, request.timezone)

    session_id = await client.create_session_with_message(
        message=message,
        title=title,
        model=action.model,
        agent=action.agent,
    )

    if action.notify is None:
        return ActionOutcome(session_id=session_id)

    notify_context = build_context(request.timezone).extend(
        session_id=session_id,
        routine_name=request.name,
    )
    notified = await notifier(
        substitute(action.notify.title, notify_context),
        substitute(action.notify.body, notify_context),
        substitute(action.notify.deeplink, notify_context)
        if action.notify.deeplink
        else None,
    )
    return ActionOutcome(session_id=session_id, notified=notified)


# Keyed by the action's ``type`` tag
ACTION_HANDLERS: dict[str, ActionHandler] = {
    "new_session": _run_new_session,
}


async def perform_action(
    request: ExecutionRequest,
    client: OpenCodeClient,
    notifier: Notifier,
) -> ActionOutcome:
    """Perform the request's action.

    Raises:
        RemoteAPIError: If the remote session API fails.
        ValueError: If the action type has no handler or the timezone is invalid.
    """
    handler = ACTION_HANDLERS.get(request.action.type)
    if handler is None:
        raise ValueError(f"Unsupported action type: {request.action.type}")
    return await handler(request, request.action, client, notifier)


async def run_isolate(
    request: ExecutionRequest,
    emit: Emit,
    *,
    client_factory: ClientFactory = default_client_factory,
    notifier: Notifier | None = None,
) -> None:
    """Run one firing, reporting through ``emit``. Never raises."""
    emit(Log(f"Executing routine: {request.name}"))
    try:
        async with client_factory(request) as client:
            outcome = await perform_action(
                request, client, notifier or default_notifier(request)
            )
        if outcome.notified is False:
            emit(Error(f"Routine {request.name}: notification failed"))
        emit(Log(f"Routine {request.name} completed successfully"))
    except Exception as e:
        emit(Error(f"Routine {request.name} failed: {e}"))
    finally:
        emit(Done())


# =============================================================================
# Subprocess entry point
# =============================================================================


class StreamChannel:
    """Writes isolate messages to a text stream as JSON lines."""

    def __init__(self, stream: TextIO):
        self._stream = stream

    def send(self, message: IsolateMessage) -> None:
        self._stream.write(encode_message(message) + "\n")
        self._stream.flush()


def main() -> int:
    request = ExecutionRequest.from_json(sys.stdin.read())
    channel = StreamChannel(sys.stdout)
    logging.basicConfig(
        level=logging.INFO,
        handlers=[ChannelLogHandler(channel.send)],
        force=True,
    )
    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    asyncio.run(run_isolate(request, channel.send))
    return 0

