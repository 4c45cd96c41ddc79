"""Tests for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from tests.fakes import FakeDiskStats
from wslcompact import __version__
from wslcompact.cli import _abort_guidance, app
from wslcompact.config import Configuration
from wslcompact.images import Distribution
from wslcompact.models import AbortReason, CycleResult, CycleState, OperationMode
from wslcompact.orchestrator import RunSummary, StopReason, WorkflowOrchestrator
from wslcompact.sizing import CyclePlan

runner = CliRunner()

FAST_CONFIG = """\
monitors:
  progress_interval: 0.01
  disk_interval: 0.01
  protected_app_interval: 0.01
  alert_poll_interval: 0.01
simulation:
  fill_rate_gb_per_second: 1000
  compaction_seconds: 0
  shutdown_seconds: 0
"""


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep config and log files inside tmp_path."""
    config_path = tmp_path / "config" / "config.yaml"
    monkeypatch.setattr(Configuration, "get_default_config_path", classmethod(lambda cls: config_path))
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "appdata"))
    return config_path


@pytest.fixture
def no_logging_setup() -> Iterator[None]:
    with patch("wslcompact.cli.configure_logging"):
        yield


class TestVersion:
    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"wsl-compact {__version__}" in result.output


class TestInit:
    def test_creates_default_config(self, isolated_home: Path) -> None:
        result = runner.invoke(app, ["init"])

        assert result.exit_code == 0
        assert Configuration.from_yaml(isolated_home) == Configuration()

    def test_refuses_overwrite_without_force(self, isolated_home: Path) -> None:
        isolated_home.parent.mkdir(parents=True)
        isolated_home.write_text("distro: Ubuntu\n")

        result = runner.invoke(app, ["init"])

        assert result.exit_code == 1
        assert isolated_home.read_text() == "distro: Ubuntu\n"

    def test_force_overwrites(self, isolated_home: Path) -> None:
        isolated_home.parent.mkdir(parents=True)
        isolated_home.write_text("distro: Ubuntu\n")

        result = runner.invoke(app, ["init", "--force"])

        assert result.exit_code == 0
        assert "distro: null" in isolated_home.read_text()


class TestLogs:
    def test_no_logs_directory(self) -> None:
        result = runner.invoke(app, ["logs"])
        assert result.exit_code == 0
        assert "does not exist yet" in result.output

    def test_last_without_logs_fails(self) -> None:
        result = runner.invoke(app, ["logs", "--last"])
        assert result.exit_code == 1

    def test_last_displays_entries(self, tmp_path: Path) -> None:
        logs_dir = tmp_path / "appdata" / "wsl-compact" / "logs"
        logs_dir.mkdir(parents=True)
        (logs_dir / "compact-20260101T000000.log").write_text(
            '{"timestamp": "2026-01-01T00:00:01.5Z", "level": "info", "logger": "wslcompact.engine",'
            ' "event": "Cycle 1 done", "cycle": 1}\n'
            "not json\n"
        )

        result = runner.invoke(app, ["logs", "--last"])

        assert result.exit_code == 0
        assert "Cycle 1 done" in result.output
        assert "cycle=1" in result.output
        assert "not json" in result.output


class TestRun:
    def test_config_error_exits_1(self, isolated_home: Path, image_file: Path) -> None:
        isolated_home.parent.mkdir(parents=True)
        isolated_home.write_text("monitors:\n  disk_interval: -1\n")

        result = runner.invoke(app, ["run", "--simulate", "--image", str(image_file)])

        assert result.exit_code == 1
        assert "monitors.disk_interval" in result.output

    def test_force_requires_non_interactive_mode(self, image_file: Path) -> None:
        result = runner.invoke(app, ["run", "--force", "--image", str(image_file)])
        assert result.exit_code == 1

    def test_force_without_elevation_exits_1(self, image_file: Path) -> None:
        with (
            patch("wslcompact.cli.is_elevated", return_value=False),
            patch("wslcompact.cli.relaunch_elevated") as relaunch,
        ):
            result = runner.invoke(app, ["run", "--mode", "incremental", "--force", "--image", str(image_file)])

        assert result.exit_code == 1
        relaunch.assert_not_called()

    def test_not_elevated_relaunches(self, image_file: Path) -> None:
        with (
            patch("wslcompact.cli.is_elevated", return_value=False),
            patch("wslcompact.cli.relaunch_elevated", return_value=0) as relaunch,
        ):
            result = runner.invoke(app, ["run", "--mode", "full", "--image", str(image_file)])

        assert result.exit_code == 0
        relaunch.assert_called_once()

    def test_interactive_decline_changes_nothing(self, image_file: Path, no_logging_setup: None) -> None:
        with (
            patch("wslcompact.cli.HostDiskStats", return_value=FakeDiskStats(free_gb=100, image_gb=40)),
            patch("wslcompact.cli.Prompt.ask", return_value="incremental") as prompt,
            patch("wslcompact.cli.Confirm.ask", return_value=False),
            patch("wslcompact.cli.WorkflowOrchestrator") as orchestrator,
        ):
            result = runner.invoke(app, ["run", "--simulate", "--image", str(image_file)])

        assert result.exit_code == 0
        assert "Nothing changed" in result.output
        assert prompt.call_args.kwargs["default"] == "full"  # free=100, min=20, image=40
        orchestrator.assert_not_called()

    def test_simulated_run(self, tmp_path: Path, image_file: Path, no_logging_setup: None) -> None:
        config_file = tmp_path / "fast.yaml"
        config_file.write_text(FAST_CONFIG)
        args = [
            "run",
            "--simulate",
            "--force",
            "--mode",
            "incremental",
            "--cycle-cap",
            "2",
            "--max-cycles",
            "2",
            "--image",
            str(image_file),
            "--config",
            str(config_file),
        ]
        with patch("wslcompact.cli.HostDiskStats", return_value=FakeDiskStats(free_gb=100, image_gb=40)):
            result = runner.invoke(app, args)

        assert result.exit_code == 0, result.output
        assert "Compaction summary (simulated)" in result.output
        assert "4.00 GB" in result.output


class TestRecommend:
    def test_recommends_incremental_for_large_image(self, image_file: Path) -> None:
        with patch("wslcompact.cli.HostDiskStats", return_value=FakeDiskStats(free_gb=45, image_gb=200)):
            result = runner.invoke(app, ["recommend", "--image", str(image_file)])

        assert result.exit_code == 0
        assert "incremental" in result.output
        assert "Cycles of up to" in result.output

    def test_missing_image(self, tmp_path: Path) -> None:
        with patch("wslcompact.cli.find_default_image", return_value=None):
            result = runner.invoke(app, ["recommend"])
        assert result.exit_code == 1
        assert "No WSL image found" in result.output


def _aborted_summary(reason: AbortReason) -> RunSummary:
    return RunSummary(
        mode=OperationMode.INCREMENTAL,
        simulate=True,
        plan=CyclePlan(cycle_cap_gb=2, max_cycles=2),
        initial_image_gb=40,
        initial_free_gb=100,
        started_at=datetime.now(UTC),
        final_image_gb=40,
        final_free_gb=100,
        ended_at=datetime.now(UTC),
        stop_reason=StopReason.ABORTED,
        cycles=[
            CycleResult(cycle=1, state=CycleState.DONE, written_gb=2, reclaimed_gb=1),
            CycleResult(cycle=2, state=CycleState.ABORTED, written_gb=2, abort_reason=reason),
        ],
    )


class TestAbortGuidance:
    """A safety abort tells the user how to get a clean next run."""

    ARGS = ["run", "--simulate", "--force", "--mode", "incremental", "--cycle-cap", "2", "--max-cycles", "2"]

    @pytest.mark.parametrize(
        ("reason", "expected"),
        [
            (AbortReason.PROTECTED_APP, "Close Docker Desktop"),
            (AbortReason.CRITICAL_DISK, "smaller --cycle-cap"),
        ],
    )
    def test_guidance_by_abort_reason(
        self, image_file: Path, no_logging_setup: None, reason: AbortReason, expected: str
    ) -> None:
        with (
            patch("wslcompact.cli.HostDiskStats", return_value=FakeDiskStats(free_gb=100, image_gb=40)),
            patch.object(WorkflowOrchestrator, "run", AsyncMock(return_value=_aborted_summary(reason))),
        ):
            result = runner.invoke(app, [*self.ARGS, "--image", str(image_file)])

        assert result.exit_code == 1
        assert expected in result.output

    def test_user_abort_has_no_guidance(self) -> None:
        summary = _aborted_summary(AbortReason.USER_ABORT)
        assert _abort_guidance(summary) is None

    def test_successful_run_has_no_guidance(self) -> None:
        summary = _aborted_summary(AbortReason.CRITICAL_DISK)
        summary.cycles.pop()
        assert _abort_guidance(summary) is None


class TestDistributionSelection:
    """Without --distro the distribution stored in the image is zero-filled."""

    def _run(self, image_file: Path, *extra: str) -> tuple[int, MagicMock]:
        debian = Distribution("Debian", image_file.parent)
        ubuntu = Distribution("Ubuntu", image_file.parent / "Ubuntu", is_default=True)
        with (
            patch("wslcompact.cli.registered_distributions", return_value=[ubuntu, debian]),
            patch("wslcompact.cli.HostDiskStats", return_value=FakeDiskStats(free_gb=100, image_gb=40)),
            patch("wslcompact.cli.WorkflowOrchestrator") as orchestrator,
            patch("wslcompact.cli._async_run", AsyncMock(return_value=0)),
        ):
            result = runner.invoke(
                app, ["run", "--simulate", "--force", "--mode", "full", "--image", str(image_file), *extra]
            )
        return result.exit_code, orchestrator

    def test_owner_of_image_is_filled(self, image_file: Path, no_logging_setup: None) -> None:
        exit_code, orchestrator = self._run(image_file)
        assert exit_code == 0
        assert orchestrator.call_args.args[0].distro == "Debian"

    def test_explicit_distro_wins(self, image_file: Path, no_logging_setup: None) -> None:
        exit_code, orchestrator = self._run(image_file, "--distro", "Ubuntu")
        assert exit_code == 0
        assert orchestrator.call_args.args[0].distro == "Ubuntu"
