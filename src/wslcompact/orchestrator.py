"""Workflow orchestrator: preflight, cycle loop and run summary."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from wslcompact.decisions import AlertResolver, automatic_resolver
from wslcompact.disk import DiskStatProvider, HostDiskStats
from wslcompact.engine import CompactionCycleEngine, ProtectedAppProbe
from wslcompact.events import EventBus, PhaseEvent
from wslcompact.executor import find_wsl_executable
from wslcompact.images import Distribution, distribution_for_image, registered_distributions
from wslcompact.models import (
    AbortReason,
    CycleResult,
    ExecutionContext,
    OperationMode,
    OperationPhase,
    ValidationError,
    ValidationIssue,
)
from wslcompact.monitors import find_protected_process
from wslcompact.operations import LeafOperations, create_operations
from wslcompact.phase import PhaseTracker
from wslcompact.signals import CancellationToken
from wslcompact.sizing import CyclePlan, ModeThresholds, plan_cycles, resolve_mode

__all__ = ["RunSummary", "StopReason", "WorkflowOrchestrator"]

logger = logging.getLogger(__name__)


class StopReason(StrEnum):
    """Why the cycle loop ended."""

    MAX_CYCLES = "max_cycles"
    NO_HEADROOM = "no_headroom"
    SPACE_SUFFICIENT = "space_sufficient"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass
class RunSummary:
    """Aggregate outcome of a run, rendered by the CLI."""

    mode: OperationMode
    simulate: bool
    plan: CyclePlan
    initial_image_gb: float
    initial_free_gb: float
    started_at: datetime
    final_image_gb: float | None = None
    final_free_gb: float | None = None
    ended_at: datetime | None = None
    stop_reason: StopReason | None = None
    cycles: list[CycleResult] = field(default_factory=list)

    @property
    def total_written_gb(self) -> float:
        return sum(c.written_gb for c in self.cycles)

    @property
    def total_reclaimed_gb(self) -> float:
        """Sum of per-cycle reclaimed sizes that could be measured."""
        return sum(c.reclaimed_gb for c in self.cycles if c.reclaimed_gb is not None)

    @property
    def safety_aborted(self) -> bool:
        """True when a cycle was aborted by a critical disk or a protected application."""
        return any(c.aborted and c.abort_reason != AbortReason.USER_ABORT for c in self.cycles)

    @property
    def exit_code(self) -> int:
        """0 for success or a clean user stop, 1 for a safety abort."""
        return 1 if self.safety_aborted else 0


class WorkflowOrchestrator:
    """Runs compaction cycles until the plan is exhausted or a stop condition hits.

    Collaborators default to the real ones; tests inject fakes.
    """

    def __init__(
        self,
        context: ExecutionContext,
        stats: DiskStatProvider | None = None,
        operations: LeafOperations | None = None,
        resolver: AlertResolver | None = None,
        event_bus: EventBus | None = None,
        token: CancellationToken | None = None,
        locate_runner: Callable[[], str | None] = find_wsl_executable,
        protected_app_probe: ProtectedAppProbe | None = None,
        list_distributions: Callable[[], list[Distribution]] = registered_distributions,
    ) -> None:
        self._context = context
        self._stats = stats or HostDiskStats()
        self._operations = operations
        self._resolver = resolver or automatic_resolver
        self._event_bus = event_bus or EventBus()
        self._token = token or CancellationToken()
        self._locate_runner = locate_runner
        self._list_distributions = list_distributions
        self._protected_app_probe: ProtectedAppProbe = protected_app_probe or find_protected_process
        self._phase_tracker = PhaseTracker(listener=self._publish_phase)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def phase_tracker(self) -> PhaseTracker:
        return self._phase_tracker

    @property
    def token(self) -> CancellationToken:
        return self._token

    def _publish_phase(self, phase: OperationPhase) -> None:
        self._event_bus.publish(PhaseEvent(phase=phase))

    def validate(self) -> list[ValidationIssue]:
        """Preflight checks. Nothing is modified here."""
        ctx = self._context
        issues: list[ValidationIssue] = []

        if ctx.min_free_gb <= 0:
            issues.append(ValidationIssue("min_free_gb", "must be greater than 0"))
        if ctx.max_cycles < 1:
            issues.append(ValidationIssue("max_cycles", "must be at least 1"))
        if ctx.cycle_cap_gb < 1:
            issues.append(ValidationIssue("cycle_cap_gb", "must be at least 1 GB"))

        if not ctx.image_path.is_file():
            issues.append(ValidationIssue("image", f"{ctx.image_path} does not exist"))

        if not ctx.simulate:
            if self._locate_runner() is None:
                issues.append(ValidationIssue("wsl", "wsl.exe was not found on PATH"))
            owner_issue = self._image_owner_issue()
            if owner_issue is not None:
                issues.append(owner_issue)

        try:
            free_gb = self._stats.free_gb(ctx.host_drive)
        except RuntimeError as e:
            issues.append(ValidationIssue("host_drive", str(e)))
        else:
            if free_gb < ctx.min_free_gb:
                issues.append(
                    ValidationIssue(
                        "host_drive",
                        f"{free_gb:.1f} GB free on {ctx.host_drive}, below the {ctx.min_free_gb:.1f} GB minimum",
                    )
                )

        running = self._protected_app_probe(ctx.config.protected_apps)
        if running is not None:
            message = f"{running.name or 'a protected application'} (pid {running.pid}) is running"
            if ctx.simulate:
                logger.warning("%s; a real run would refuse to start", message)
            else:
                issues.append(ValidationIssue("protected_apps", f"{message}; close it first"))

        return issues

    def _image_owner_issue(self) -> ValidationIssue | None:
        """Check that the distribution being zero-filled is the one stored in the image."""
        ctx = self._context
        distributions = self._list_distributions()
        if not distributions:
            logger.debug("No registered WSL distributions found, image ownership not checked")
            return None

        owner = distribution_for_image(ctx.image_path, distributions)
        if owner is None:
            return ValidationIssue(
                "image",
                f"{ctx.image_path} is not the disk of a registered WSL distribution, zero-filling cannot reach it",
            )
        target = ctx.distro or next((d.name for d in distributions if d.is_default), None)
        if target is None or target.casefold() != owner.name.casefold():
            return ValidationIssue(
                "distro",
                f"{ctx.image_path} belongs to {owner.name} but {target or 'no default distribution'} would be "
                f"zero-filled; pass --distro {owner.name}",
            )
        return None

    async def run(self) -> RunSummary:
        """Execute the complete workflow.

        Raises:
            ValidationError: If preflight validation fails
            CompactionError: If the compaction tool fails
            asyncio.CancelledError: If the user interrupted the run
        """
        ctx = self._context
        issues = self.validate()
        if issues:
            for issue in issues:
                logger.error("Preflight: %s: %s", issue.field, issue.message)
            raise ValidationError(issues)

        initial_image_gb = self._stats.file_size_gb(ctx.image_path)
        initial_free_gb = self._stats.free_gb(ctx.host_drive)
        mode = resolve_mode(
            ctx.mode,
            initial_free_gb,
            ctx.min_free_gb,
            initial_image_gb,
            ModeThresholds.from_config(ctx.config.thresholds),
        )
        plan = plan_cycles(mode, ctx.cycle_cap_gb, ctx.max_cycles)
        summary = RunSummary(
            mode=mode,
            simulate=ctx.simulate,
            plan=plan,
            initial_image_gb=initial_image_gb,
            initial_free_gb=initial_free_gb,
            started_at=datetime.now(UTC),
        )
        logger.info(
            "Compacting %s in %s mode (image %.1f GB, %.1f GB free on %s)%s",
            ctx.image_path,
            mode.value,
            initial_image_gb,
            initial_free_gb,
            ctx.host_drive,
            " [simulate]" if ctx.simulate else "",
        )

        operations = self._operations or create_operations(ctx, initial_image_gb)
        engine = CompactionCycleEngine(
            ctx,
            operations,
            self._stats,
            self._resolver,
            event_bus=self._event_bus,
            token=self._token,
            phase_tracker=self._phase_tracker,
            protected_app_probe=self._protected_app_probe,
        )

        try:
            # A filler left behind by an interrupted run would distort free space
            with self._phase_tracker.enter(OperationPhase.CLEANUP):
                await operations.remove_filler()

            summary.stop_reason = await self._run_cycles(engine, operations, plan, summary)
            logger.info(
                "Run finished (%s): %d cycle(s), %.1f GB reclaimed",
                summary.stop_reason.value,
                len(summary.cycles),
                summary.total_reclaimed_gb,
            )
            return summary

        except asyncio.CancelledError:
            summary.stop_reason = StopReason.CANCELLED
            logger.warning("Run interrupted by user")
            raise

        except Exception as e:
            logger.critical("Run failed: %s", e)
            raise

        finally:
            summary.ended_at = datetime.now(UTC)
            try:
                summary.final_image_gb = self._stats.file_size_gb(ctx.image_path)
                summary.final_free_gb = self._stats.free_gb(ctx.host_drive)
            except (OSError, RuntimeError) as e:
                logger.warning("Cannot read final disk statistics: %s", e)

    async def _run_cycles(
        self,
        engine: CompactionCycleEngine,
        operations: LeafOperations,
        plan: CyclePlan,
        summary: RunSummary,
    ) -> StopReason:
        ctx = self._context
        for cycle in range(1, plan.max_cycles + 1):
            if self._token.cancelled:
                return StopReason.CANCELLED

            free_gb = self._stats.free_gb(ctx.host_drive)
            fill_gb = plan.fill_size(free_gb, ctx.min_free_gb)
            logger.debug("Cycle %d: %.1f GB free, fill %.1f GB", cycle, free_gb, fill_gb)
            if fill_gb < 1:
                logger.info("No headroom left above %.1f GB minimum free", ctx.min_free_gb)
                return StopReason.NO_HEADROOM

            result = await engine.run_cycle(fill_gb, cycle, plan.is_full)
            summary.cycles.append(result)

            if result.aborted:
                return StopReason.ABORTED
            if operations.space_sufficient():
                logger.info("Nothing left to reclaim after cycle %d", cycle)
                return StopReason.SPACE_SUFFICIENT

        return StopReason.MAX_CYCLES
