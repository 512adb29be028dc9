"""Tests for the notification relay dispatcher."""

import logging
import stat
from pathlib import Path

import pytest

from cody_routines.notify import (
    RelayStatus,
    build_relay_args,
    run_relay,
    send_notification,
)


def make_relay(tmp_path: Path, script: str) -> str:
    """Write an executable relay script and return its path."""
    path = tmp_path / "relay"
    path.write_text("#!/bin/sh\n" + script)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


class TestBuildRelayArgs:
    def test_without_deeplink(self):
        assert build_relay_args("Title", "Body") == ["notify", "Title", "Body"]

    def test_with_deeplink(self):
        assert build_relay_args("T", "B", "app://s/1") == [
            "notify",
            "T",
            "B",
            "--deeplink",
            "app://s/1",
        ]


class TestSendNotification:
    """Tests for send_notification outcomes."""

    @pytest.mark.asyncio
    async def test_missing_relay_returns_false(self, tmp_path, caplog):
        missing = str(tmp_path / "no-such-relay")

        with caplog.at_level(logging.ERROR, logger="cody_routines.notify"):
            sent = await send_notification("T", "B", command=missing)

        assert sent is False
        assert [r.getMessage() for r in caplog.records] == [
            "notification_relay_not_found"
        ]

    @pytest.mark.asyncio
    async def test_nonzero_exit_returns_false_with_stderr(self, tmp_path, caplog):
        relay = make_relay(tmp_path, 'echo "device not paired" >&2\nexit 3\n')

        with caplog.at_level(logging.ERROR, logger="cody_routines.notify"):
            sent = await send_notification("T", "B", command=relay)

        assert sent is False
        [record] = caplog.records
        assert record.getMessage() == "notification_relay_failed"
        assert record.__dict__["process.exit_code"] == 3
        assert record.__dict__["error.message"] == "device not paired"

    @pytest.mark.asyncio
    async def test_zero_exit_returns_true(self, tmp_path):
        relay = make_relay(tmp_path, "exit 0\n")
        assert await send_notification("T", "B", command=relay) is True

    @pytest.mark.asyncio
    async def test_arguments_passed_to_relay(self, tmp_path):
        out = tmp_path / "args.txt"
        relay = make_relay(tmp_path, f'printf "%s\\n" "$@" > "{out}"\n')

        sent = await send_notification(
            "Digest ready", "Session ses_1 started", "app://ses_1", command=relay
        )

        assert sent is True
        assert out.read_text().splitlines() == [
            "notify",
            "Digest ready",
            "Session ses_1 started",
            "--deeplink",
            "app://ses_1",
        ]


class TestRunRelay:
    """Tests for relay outcome classification."""

    @pytest.mark.asyncio
    async def test_not_found_status(self, tmp_path):
        result = await run_relay("T", "B", command=str(tmp_path / "missing"))

        assert result.status is RelayStatus.NOT_FOUND
        assert not result.ok

    @pytest.mark.asyncio
    async def test_failed_status(self, tmp_path):
        relay = make_relay(tmp_path, "echo oops >&2\nexit 1\n")
        result = await run_relay("T", "B", command=relay)

        assert result.status is RelayStatus.FAILED
        assert result.exit_code == 1
        assert result.stderr == "oops"

    @pytest.mark.asyncio
    async def test_timeout_is_error(self, tmp_path):
        relay = make_relay(tmp_path, "exec sleep 5\n")
        result = await run_relay("T", "B", command=relay, timeout=0.1)

        assert result.status is RelayStatus.ERROR
        assert "timed out" in result.stderr
