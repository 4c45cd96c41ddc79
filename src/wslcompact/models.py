"""Core types and dataclasses for wsl-compact."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from wslcompact.config import Configuration

__all__ = [
    "AbortReason",
    "Alert",
    "AlertAction",
    "CommandResult",
    "CompactionError",
    "CriticalDiskAlert",
    "CycleResult",
    "CycleState",
    "ExecutionContext",
    "LogLevel",
    "LowDiskAlert",
    "OperationMode",
    "OperationPhase",
    "ProgressAlert",
    "ProtectedAppAlert",
    "ValidationError",
    "ValidationIssue",
]


class LogLevel(IntEnum):
    """Six-level logging hierarchy with explicit ordering.

    Values match the stdlib logging levels, with FULL between DEBUG and INFO.
    """

    DEBUG = 10  # Internal diagnostics
    FULL = 15  # Operational details (commands, polled values)
    INFO = 20  # High-level operations
    WARNING = 30  # Unexpected but non-fatal
    ERROR = 40  # Recoverable errors
    CRITICAL = 50  # Run must abort


class OperationPhase(StrEnum):
    """Risk state of the engine, consulted by the interrupt handler."""

    SAFE = "safe"
    ZERO_FILL = "zero_fill"
    COMPACTION = "compaction"
    CLEANUP = "cleanup"


class OperationMode(StrEnum):
    """How many cycles to run and how much to fill per cycle."""

    INTERACTIVE = "interactive"
    INCREMENTAL = "incremental"
    FULL = "full"
    AUTO = "auto"


class CycleState(StrEnum):
    """States of a single fill -> shutdown -> compact cycle."""

    INIT = "init"
    FILLING = "filling"
    SKIPPED = "skipped"
    FILLED = "filled"
    SHUTTING_DOWN = "shutting_down"
    COMPACTING = "compacting"
    DONE = "done"
    ABORTED = "aborted"


class AbortReason(StrEnum):
    """Why a cycle ended in the ABORTED state."""

    USER_ABORT = "user_abort"
    CRITICAL_DISK = "critical_disk"
    PROTECTED_APP = "protected_app"


class AlertAction(StrEnum):
    """Decision taken for a critical alert during the fill."""

    SKIP_TO_COMPACTION = "skip"
    CONTINUE = "continue"
    ABORT = "abort"


@dataclass(frozen=True)
class CommandResult:
    """Result of executing a command in the subsystem or on the host."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class LowDiskAlert:
    """Host free space dropped below the minimum free threshold."""

    free_gb: float


@dataclass(frozen=True)
class CriticalDiskAlert:
    """Host free space dropped below the critical fraction of the threshold."""

    free_gb: float


@dataclass(frozen=True)
class ProtectedAppAlert:
    """A protected application is running."""

    pid: int
    name: str = ""


@dataclass(frozen=True)
class ProgressAlert:
    """Filler progress sample."""

    percent: int
    bytes_written: int

    def __post_init__(self) -> None:
        if not 0 <= self.percent <= 100:
            raise ValueError(f"percent must be 0-100, got {self.percent}")


Alert: TypeAlias = LowDiskAlert | CriticalDiskAlert | ProtectedAppAlert | ProgressAlert


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable per-run configuration, shared by reference across components."""

    image_path: Path
    host_drive: str  # e.g. "C:" on Windows, a mount point elsewhere
    min_free_gb: float
    cycle_cap_gb: float  # Already resolved when 0 (auto) was requested
    max_cycles: int
    force: bool
    simulate: bool
    mode: OperationMode
    config: Configuration
    distro: str | None = None  # None = default distribution


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one cycle, consumed immediately by the orchestrator."""

    cycle: int
    state: CycleState  # DONE or ABORTED
    written_gb: float = 0.0
    reclaimed_gb: float | None = None
    abort_reason: AbortReason | None = None
    fill_skipped: bool = False

    @property
    def success(self) -> bool:
        return self.state == CycleState.DONE

    @property
    def aborted(self) -> bool:
        return self.state == CycleState.ABORTED


@dataclass(frozen=True)
class ValidationIssue:
    """Single problem found during preflight validation."""

    field: str
    message: str


class ValidationError(Exception):
    """Raised when preflight validation fails; nothing has been modified yet."""

    def __init__(self, issues: list[ValidationIssue]) -> None:
        self.issues = issues
        messages = [f"{issue.field}: {issue.message}" for issue in issues]
        super().__init__("Preflight validation failed:\n" + "\n".join(messages))


class CompactionError(Exception):
    """Raised when the image compaction tool fails.

    Fatal for the whole run: a partially compacted image is never retried
    automatically.
    """

    def __init__(self, image_path: Path, tool: str, detail: str) -> None:
        self.image_path = image_path
        self.tool = tool
        self.detail = detail
        super().__init__(f"{tool} failed to compact {image_path}: {detail}")
