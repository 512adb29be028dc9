"""Tests for CLI commands."""

from datetime import UTC, datetime

import pytest

from cody_routines.cli.app import app
from cody_routines.cli.console import format_countdown
from tests.conftest import DAILY_DIGEST, routine_yaml

# Nothing listens on the discard port, so connections are refused at once
UNREACHABLE = "http://127.0.0.1:9"


class TestListCommand:
    """Tests for 'cody-routines list'."""

    def test_lists_routines_and_errors(self, cli_runner, routines_dir, write_routine):
        write_routine("alpha.yaml", routine_yaml("Alpha"))
        write_routine("beta.yaml", routine_yaml("Beta", "every hour"))
        write_routine("bad.yaml", "name: Bad")

        result = cli_runner.invoke(app, ["list", "-r", str(routines_dir)])

        assert result.exit_code == 0
        assert "alpha" in result.stdout
        assert "beta" in result.stdout
        assert "Invalid routines (1)" in result.stdout
        assert "bad.yaml" in result.stdout

    def test_empty_directory(self, cli_runner, routines_dir):
        result = cli_runner.invoke(app, ["list", "--routines", str(routines_dir)])

        assert result.exit_code == 0
        assert "No routines found." in result.stdout

    def test_requires_routines_option(self, cli_runner):
        result = cli_runner.invoke(app, ["list"])
        assert result.exit_code != 0


class TestValidateCommand:
    """Tests for 'cody-routines validate'."""

    def test_all_valid(self, cli_runner, routines_dir, write_routine):
        write_routine("alpha.yaml", routine_yaml("Alpha"))
        write_routine("beta.yaml", routine_yaml("Beta", "every weekday at 08:30"))

        result = cli_runner.invoke(app, ["validate", "-r", str(routines_dir)])

        assert result.exit_code == 0
        assert "Validation complete: 2 valid routine(s)" in result.stdout

    def test_invalid_file(self, cli_runner, routines_dir, write_routine):
        write_routine("alpha.yaml", routine_yaml("Alpha"))
        write_routine("bad.yaml", "name: Bad")

        result = cli_runner.invoke(app, ["validate", "-r", str(routines_dir)])

        assert result.exit_code == 1
        assert "bad.yaml" in result.stdout
        assert "Validation failed: 1 invalid routine(s)" in result.stdout

    def test_unparseable_schedule(self, cli_runner, routines_dir, write_routine):
        write_routine("numeric.yaml", routine_yaml("Numeric", "15"))

        result = cli_runner.invoke(app, ["validate", "-r", str(routines_dir)])

        assert result.exit_code == 1
        assert "numeric" in result.stdout

    def test_no_files(self, cli_runner, routines_dir):
        result = cli_runner.invoke(app, ["validate", "-r", str(routines_dir)])

        assert result.exit_code == 1
        assert "No routine files found" in result.stdout


class TestRunCommand:
    """Tests for 'cody-routines run'."""

    def test_dry_run_resolves_templates(self, cli_runner, routines_dir, write_routine):
        write_routine("daily-digest.yaml", DAILY_DIGEST)
        now = datetime.now(UTC)

        result = cli_runner.invoke(
            app, ["run", "daily-digest", "-r", str(routines_dir), "--dry-run"]
        )

        assert result.exit_code == 0
        assert "DRY RUN" in result.stdout
        assert "Title: (none)" in result.stdout
        assert "Model: (default)" in result.stdout
        assert f"Today is {now:%A}, {now:%Y-%m-%d}." in result.stdout

    def test_dry_run_by_display_name(self, cli_runner, routines_dir, write_routine):
        write_routine("daily-digest.yaml", DAILY_DIGEST)

        result = cli_runner.invoke(
            app, ["run", "Daily digest", "-r", str(routines_dir), "--dry-run"]
        )

        assert result.exit_code == 0
        assert "Running routine: Daily digest" in result.stdout

    def test_unknown_routine_lists_available(
        self, cli_runner, routines_dir, write_routine
    ):
        write_routine("alpha.yaml", routine_yaml("Alpha"))

        result = cli_runner.invoke(app, ["run", "missing", "-r", str(routines_dir)])

        assert result.exit_code == 1
        assert "Routine not found: missing" in result.stdout
        assert "alpha (Alpha)" in result.stdout

    def test_remote_failure_exits_nonzero(
        self, cli_runner, routines_dir, write_routine
    ):
        write_routine("alpha.yaml", routine_yaml("Alpha"))

        result = cli_runner.invoke(
            app, ["run", "alpha", "-r", str(routines_dir), "-s", UNREACHABLE]
        )

        assert result.exit_code == 1
        assert "Routine failed" in result.stdout


class TestStartCommand:
    """Tests for 'cody-routines start'."""

    @pytest.fixture
    def schedulers(self, monkeypatch) -> list:
        """Record every scheduler the daemon tries to build."""
        built: list = []
        monkeypatch.setattr(
            "cody_routines.daemon.JobScheduler",
            lambda *args, **kwargs: built.append(args),
        )
        return built

    def test_unreachable_server_exits_nonzero(
        self, cli_runner, routines_dir, write_routine, schedulers
    ):
        write_routine("alpha.yaml", routine_yaml("Alpha"))

        result = cli_runner.invoke(
            app, ["start", "-r", str(routines_dir), "--server", UNREACHABLE]
        )

        assert result.exit_code == 1
        assert "Failed to connect" in result.stdout
        assert schedulers == []

    def test_unhealthy_server_exits_nonzero(
        self,
        cli_runner,
        routines_dir,
        write_routine,
        opencode_server,
        schedulers,
        monkeypatch,
    ):
        write_routine("alpha.yaml", routine_yaml("Alpha"))
        opencode_server.healthy = False
        monkeypatch.setattr(
            "cody_routines.daemon.OpenCodeClient",
            lambda url, **kwargs: opencode_server.client(url),
        )

        result = cli_runner.invoke(
            app, ["start", "-r", str(routines_dir), "-s", "http://opencode.test"]
        )

        assert result.exit_code == 1
        assert "OpenCode server at http://opencode.test is not healthy" in (
            result.stdout
        )
        assert schedulers == []
        assert [r.url.path for r in opencode_server.requests] == ["/global/health"]


class TestFormatCountdown:
    def test_formats(self):
        now = datetime(2026, 1, 12, 12, 0, tzinfo=UTC)

        assert format_countdown(None, now) == "[dim]?[/dim]"
        assert format_countdown(now, now) == "[green]now[/green]"
        assert format_countdown(datetime(2026, 1, 12, 12, 0, 30, tzinfo=UTC), now) == (
            "in 30s"
        )
        assert format_countdown(datetime(2026, 1, 12, 14, 5, tzinfo=UTC), now) == (
            "in 2h 5m"
        )
        assert format_countdown(datetime(2026, 1, 14, 12, 0, tzinfo=UTC), now) == (
            "in 2d"
        )
