"""Logging infrastructure for wsl-compact.

Modules log through ``logging.getLogger(__name__)``. :func:`configure_logging`
puts structlog's ProcessorFormatter in front of two stdlib handlers: JSON lines
to the session log file and colored, human-readable output on the terminal.
"""

from __future__ import annotations

import logging
import os
import socket
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.typing import EventDict, WrappedLogger

from wslcompact.models import LogLevel

__all__ = [
    "configure_logging",
    "generate_log_filename",
    "get_latest_log_file",
    "get_logs_directory",
]

# Register custom FULL log level with Python's logging module
logging.addLevelName(LogLevel.FULL, "FULL")

_PACKAGE_LOGGER = "wslcompact"


def _add_hostname(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add hostname to log context if not already present."""
    if "hostname" not in event_dict:
        event_dict["hostname"] = socket.gethostname()
    return event_dict


def configure_logging(
    log_file_level: LogLevel,
    log_cli_level: LogLevel,
    log_file_path: Path | None,
) -> None:
    """Configure dual output: file (JSON) and terminal (console renderer).

    Args:
        log_file_level: Minimum level for file logging
        log_cli_level: Minimum level for terminal display
        log_file_path: Path to log file, or None to log to the terminal only
    """
    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_hostname,
        structlog.processors.StackInfoRenderer(),
    ]

    handlers: list[logging.Handler] = []

    if log_file_path is not None:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setLevel(log_file_level)
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(),
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_cli_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=True),
            ],
            foreign_pre_chain=shared_processors,
        )
    )
    handlers.append(console_handler)

    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        package_logger.addHandler(handler)
    package_logger.setLevel(min(log_file_level, log_cli_level) if log_file_path else log_cli_level)
    package_logger.propagate = False


def generate_log_filename(timestamp: datetime | None = None) -> str:
    """Generate log filename for a run.

    Format: compact-<timestamp>.log
    """
    if timestamp is None:
        timestamp = datetime.now()
    return f"compact-{timestamp.strftime('%Y%m%dT%H%M%S')}.log"


def get_logs_directory() -> Path:
    """Get the logs directory path.

    Uses %LOCALAPPDATA% on Windows hosts, the XDG data location elsewhere.
    """
    local_app_data = os.environ.get("LOCALAPPDATA")
    if local_app_data:
        return Path(local_app_data) / "wsl-compact" / "logs"
    return Path.home() / ".local" / "share" / "wsl-compact" / "logs"


def get_latest_log_file() -> Path | None:
    """Get the most recent log file, or None if no logs exist."""
    logs_dir = get_logs_directory()
    if not logs_dir.exists():
        return None

    log_files = sorted(logs_dir.glob("compact-*.log"), reverse=True)
    return log_files[0] if log_files else None
