"""Shared test fixtures and factories."""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest

from cody_routines.client import OpenCodeClient
from cody_routines.config import RoutinesSettings
from cody_routines.scheduling.isolate import ExecutionRequest

DAILY_DIGEST = """\
name: Daily digest
description: Morning summary
triggers:
  schedule:
    when: "0 9 * * *"
    timezone: UTC
action:
  type: new_session
  message: "Today is {{weekday}}, {{date}}."
"""


# =============================================================================
# Routine Definition Fixtures
# =============================================================================


@pytest.fixture
def routines_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "routines"
    directory.mkdir()
    return directory


@pytest.fixture
def write_routine(routines_dir: Path) -> Callable[[str, str], Path]:
    """Factory that writes a routine file and returns its path."""

    def _write(filename: str, content: str) -> Path:
        path = routines_dir / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


def routine_yaml(
    name: str,
    when: str = "0 9 * * *",
    *,
    timezone: str | None = "UTC",
    message: str = "Hello",
    enabled: bool = True,
    notify: dict[str, str] | None = None,
) -> str:
    """Render a minimal routine definition.

    JSON is valid YAML, which keeps quoting predictable.
    """
    schedule: dict[str, Any] = {"when": when}
    if timezone:
        schedule["timezone"] = timezone
    action: dict[str, Any] = {"type": "new_session", "message": message}
    if notify:
        action["notify"] = notify
    return json.dumps(
        {
            "name": name,
            "enabled": enabled,
            "triggers": {"schedule": schedule},
            "action": action,
        }
    )


@pytest.fixture
def settings() -> RoutinesSettings:
    return RoutinesSettings(server_url="http://opencode.test", debounce_seconds=0.05)


# =============================================================================
# Remote Server Fixtures
# =============================================================================


@dataclass
class FakeOpenCodeServer:
    """In-memory stand-in for the OpenCode HTTP API.

    Records every request and answers according to its configuration.
    """

    healthy: bool = True
    version: str = "1.2.3"
    session_id: str = "ses_123"
    fail_status: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="server unavailable")

        if request.method == "GET" and request.url.path == "/global/health":
            return httpx.Response(
                200, json={"healthy": self.healthy, "version": self.version}
            )
        if request.method == "POST" and request.url.path == "/session":
            body = json.loads(request.content or b"{}")
            return httpx.Response(
                200, json={"id": self.session_id, "title": body.get("title")}
            )
        if request.method == "POST" and request.url.path.endswith("/prompt_async"):
            return httpx.Response(204)
        return httpx.Response(404, text="not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, server_url: str = "http://opencode.test") -> OpenCodeClient:
        return OpenCodeClient(server_url, transport=self.transport)

    def client_factory(self, request: ExecutionRequest) -> OpenCodeClient:
        return self.client(request.server_url)

    def json_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]


@pytest.fixture
def opencode_server() -> FakeOpenCodeServer:
    return FakeOpenCodeServer()


@dataclass
class RecordingNotifier:
    """Notifier that records calls instead of running the relay."""

    result: bool = True
    calls: list[tuple[str, str, str | None]] = field(default_factory=list)

    async def __call__(self, title: str, body: str, deeplink: str | None) -> bool:
        self.calls.append((title, body, deeplink))
        return self.result


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# CLI Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep tests away from the real settings file and environment."""
    home = tmp_path / "home"
    monkeypatch.setenv("CODY_ROUTINES_HOME", str(home))
    for var in (
        "CODY_ROUTINES_SERVER_URL",
        "CODY_ROUTINES_RELAY",
        "CODY_ROUTINES_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    return home
