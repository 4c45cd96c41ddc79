"""Configuration loading and validation for wsl-compact."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from wslcompact.models import LogLevel

__all__ = [
    "ConfigError",
    "Configuration",
    "ConfigurationError",
    "MonitorConfig",
    "SimulationConfig",
    "ThresholdConfig",
]

DEFAULT_PROTECTED_APPS = ["Docker Desktop.exe", "com.docker.backend.exe"]
DEFAULT_FILLER_PATH = "/wsl-compact.zero"


@dataclass(frozen=True)
class ConfigError:
    """Error found while loading or validating the configuration file."""

    path: str  # Dotted path to invalid value
    message: str


@dataclass(frozen=True)
class ThresholdConfig:
    """Empirical decision constants. Overridable, never derived."""

    critical_ratio: float = 0.5  # CriticalDisk below critical_ratio * min_free
    full_ratio: float = 2.0  # Auto picks Full above this free/min_free ratio...
    full_min_free_gb: float = 50.0  # ...and above this much free space
    large_image_gb: float = 100.0  # Large image + tight space => Incremental
    tight_free_gb: float = 50.0
    auto_cap_divisor: float = 4.0  # --cycle-cap 0: headroom / divisor
    auto_cap_ceiling_gb: float = 50.0


@dataclass(frozen=True)
class MonitorConfig:
    """Polling intervals in seconds."""

    progress_interval: float = 2.0
    disk_interval: float = 5.0
    protected_app_interval: float = 3.0
    alert_poll_interval: float = 1.0


@dataclass(frozen=True)
class SimulationConfig:
    """Timing of the fake leaf operations used by --simulate."""

    fill_rate_gb_per_second: float = 1.0
    compaction_seconds: float = 5.0
    shutdown_seconds: float = 1.0


@dataclass(frozen=True)
class Configuration:
    """Parsed and validated configuration from YAML file."""

    log_file_level: LogLevel = LogLevel.FULL
    log_cli_level: LogLevel = LogLevel.INFO
    distro: str | None = None
    filler_path: str = DEFAULT_FILLER_PATH
    protected_apps: tuple[str, ...] = tuple(DEFAULT_PROTECTED_APPS)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    monitors: MonitorConfig = field(default_factory=MonitorConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> Configuration:
        """Load and validate configuration from YAML file.

        Args:
            path: Path to config.yaml

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: If the file is missing, YAML is invalid or schema validation fails
        """
        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                [ConfigError(path=str(path), message=f"Configuration file not found: {path}")]
            ) from None
        except yaml.YAMLError as e:
            error_msg = str(e)
            # problem_mark exists on MarkedYAMLError only
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None)
            if mark is not None and problem is not None:
                error_msg = f"YAML syntax error at line {mark.line + 1}, column {mark.column + 1}: {problem}"
            raise ConfigurationError([ConfigError(path=str(path), message=error_msg)]) from e

        return cls.from_dict(data or {})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Configuration:
        """Validate a raw mapping against the schema and build a Configuration."""
        validator = jsonschema.Draft7Validator(_load_schema())
        errors = [
            ConfigError(
                path=".".join(str(p) for p in error.absolute_path) or "root",
                message=error.message,
            )
            for error in validator.iter_errors(data)
        ]
        if errors:
            raise ConfigurationError(errors)

        log_file_level = LogLevel.FULL
        log_cli_level = LogLevel.INFO
        try:
            log_file_level = _parse_log_level(data.get("log_file_level", "FULL"))
        except ValueError as e:
            errors.append(ConfigError(path="log_file_level", message=str(e)))
        try:
            log_cli_level = _parse_log_level(data.get("log_cli_level", "INFO"))
        except ValueError as e:
            errors.append(ConfigError(path="log_cli_level", message=str(e)))

        thresholds = ThresholdConfig(**data.get("thresholds", {}))
        if thresholds.critical_ratio >= 1:
            errors.append(
                ConfigError(path="thresholds.critical_ratio", message="critical_ratio must be below 1.0")
            )

        if errors:
            raise ConfigurationError(errors)

        return cls(
            log_file_level=log_file_level,
            log_cli_level=log_cli_level,
            distro=data.get("distro"),
            filler_path=data.get("filler_path", DEFAULT_FILLER_PATH),
            protected_apps=tuple(data.get("protected_apps", DEFAULT_PROTECTED_APPS)),
            thresholds=thresholds,
            monitors=MonitorConfig(**data.get("monitors", {})),
            simulation=SimulationConfig(**data.get("simulation", {})),
        )

    @classmethod
    def load(cls, path: Path | None) -> Configuration:
        """Load an explicit config file, or the default one when it exists.

        An explicitly given path must exist. A missing default file means
        built-in defaults.
        """
        if path is not None:
            return cls.from_yaml(path)
        default_path = cls.get_default_config_path()
        if default_path.exists():
            return cls.from_yaml(default_path)
        return cls()

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default config file path."""
        return Path.home() / ".config" / "wsl-compact" / "config.yaml"


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors: list[ConfigError]) -> None:
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


def _load_schema() -> dict[str, Any]:
    """Load the config schema from package resources."""
    schema_path = Path(__file__).parent / "schemas" / "config-schema.yaml"
    with schema_path.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


def _parse_log_level(value: str) -> LogLevel:
    """Parse a log level string to LogLevel enum."""
    try:
        return LogLevel[value.upper()]
    except KeyError as e:
        valid_levels = ", ".join(level.name for level in LogLevel)
        raise ValueError(f"Invalid log level: {value}. Valid levels: {valid_levels}") from e
