"""Tests for logging configuration and log file discovery."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import pytest
from freezegun import freeze_time

from wslcompact.logger import (
    configure_logging,
    generate_log_filename,
    get_latest_log_file,
    get_logs_directory,
)
from wslcompact.models import LogLevel


@pytest.fixture
def restore_package_logger() -> Iterator[logging.Logger]:
    """Undo configure_logging() so caplog keeps working in later tests."""
    package_logger = logging.getLogger("wslcompact")
    level = package_logger.level
    yield package_logger
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(level)
    package_logger.propagate = True


class TestLogFiles:
    @freeze_time("2026-03-14 09:26:53")
    def test_filename_uses_current_time(self) -> None:
        assert generate_log_filename() == "compact-20260314T092653.log"

    def test_filename_from_timestamp(self) -> None:
        assert generate_log_filename(datetime(2025, 1, 2, 3, 4, 5)) == "compact-20250102T030405.log"

    def test_logs_directory_under_local_app_data(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))
        assert get_logs_directory() == tmp_path / "wsl-compact" / "logs"

    def test_latest_log_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))
        logs = get_logs_directory()
        logs.mkdir(parents=True)
        for name in ["compact-20250101T000000.log", "compact-20260101T000000.log", "other.log"]:
            (logs / name).write_text("")

        assert get_latest_log_file() == logs / "compact-20260101T000000.log"

    def test_no_logs_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))
        assert get_latest_log_file() is None


class TestConfigureLogging:
    def test_file_receives_json_lines(self, tmp_path: Path, restore_package_logger: logging.Logger) -> None:
        log_file = tmp_path / "logs" / "compact.log"
        configure_logging(LogLevel.FULL, LogLevel.ERROR, log_file)

        logging.getLogger("wslcompact.engine").log(LogLevel.FULL, "Filled %d GB", 10)
        logging.getLogger("wslcompact.engine").debug("below file level")
        for handler in restore_package_logger.handlers:
            handler.flush()

        lines = log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1
        record = json.loads(lines[0])
        assert record["event"] == "Filled 10 GB"
        assert record["level"] == "full"
        assert record["logger"] == "wslcompact.engine"
        assert "timestamp" in record
        assert "hostname" in record

    def test_reconfigure_replaces_handlers(self, tmp_path: Path, restore_package_logger: logging.Logger) -> None:
        configure_logging(LogLevel.INFO, LogLevel.INFO, tmp_path / "a.log")
        configure_logging(LogLevel.INFO, LogLevel.INFO, None)
        assert len(restore_package_logger.handlers) == 1
        assert restore_package_logger.level == LogLevel.INFO
