"""Shared test fixtures for wsl-compact tests."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from wslcompact.config import Configuration, MonitorConfig, SimulationConfig
from wslcompact.models import ExecutionContext, OperationMode


@pytest.fixture(scope="session", autouse=True)
def configure_test_logging() -> None:
    """Keep library logs quiet while showing wslcompact logs in failures."""
    logging.getLogger().setLevel(logging.WARNING)
    logging.getLogger("wslcompact").setLevel(logging.DEBUG)


@pytest.fixture
def fast_config() -> Configuration:
    """Configuration with intervals short enough for tests."""
    return Configuration(
        monitors=MonitorConfig(
            progress_interval=0.01,
            disk_interval=0.01,
            protected_app_interval=0.01,
            alert_poll_interval=0.01,
        ),
        simulation=SimulationConfig(
            fill_rate_gb_per_second=1000.0,
            compaction_seconds=0.01,
            shutdown_seconds=0.0,
        ),
    )


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    """An existing (tiny) image file."""
    path = tmp_path / "ext4.vhdx"
    path.write_bytes(b"\0" * 1024)
    return path


@pytest.fixture
def make_context(image_file: Path, fast_config: Configuration) -> Callable[..., ExecutionContext]:
    """Factory for ExecutionContext with test defaults; keyword arguments override."""

    def _make(**overrides: Any) -> ExecutionContext:
        values: dict[str, Any] = {
            "image_path": image_file,
            "host_drive": "C:",
            "min_free_gb": 20.0,
            "cycle_cap_gb": 10.0,
            "max_cycles": 3,
            "force": True,
            "simulate": False,
            "mode": OperationMode.INCREMENTAL,
            "config": fast_config,
        }
        values.update(overrides)
        return ExecutionContext(**values)

    return _make
