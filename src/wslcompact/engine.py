"""Compaction cycle engine: one fill -> cleanup -> shutdown -> compact cycle.

Each risky step runs inside a phase held by the :class:`PhaseTracker` and
with its monitors scoped to a :class:`MonitorSupervisor`, so when
:meth:`CompactionCycleEngine.run_cycle` returns (or raises) the phase is SAFE
again and no monitor is left running.
"""

from __future__ import annotations

from typing import TypeAlias

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from wslcompact.decisions import AlertResolver
from wslcompact.disk import DiskStatProvider, bytes_to_gb, gb_to_bytes
from wslcompact.events import CycleEvent, EventBus, PhaseEvent, ProgressEvent
from wslcompact.executor import Process
from wslcompact.models import (
    AbortReason,
    AlertAction,
    CommandResult,
    CriticalDiskAlert,
    CycleResult,
    CycleState,
    ExecutionContext,
    LogLevel,
    LowDiskAlert,
    OperationPhase,
    ProgressAlert,
    ProtectedAppAlert,
)
from wslcompact.monitors import (
    DiskSpaceMonitor,
    FillProgressMonitor,
    MonitorSupervisor,
    ProtectedAppMonitor,
)
from wslcompact.operations import LeafOperations
from wslcompact.phase import PhaseTracker
from wslcompact.signals import CancellationToken

__all__ = ["CompactionCycleEngine", "ProtectedAppProbe"]

logger = logging.getLogger(__name__)

ProtectedAppProbe: TypeAlias = Callable[[Iterable[str]], ProtectedAppAlert | None]


@dataclass
class _FillOutcome:
    written_gb: float = 0.0
    skipped: bool = False
    abort_reason: AbortReason | None = None


class CompactionCycleEngine:
    """Runs single compaction cycles for the orchestrator."""

    def __init__(
        self,
        context: ExecutionContext,
        operations: LeafOperations,
        stats: DiskStatProvider,
        resolver: AlertResolver,
        event_bus: EventBus | None = None,
        token: CancellationToken | None = None,
        phase_tracker: PhaseTracker | None = None,
        protected_app_probe: ProtectedAppProbe | None = None,
    ) -> None:
        self._context = context
        self._ops = operations
        self._stats = stats
        self._resolver = resolver
        self._event_bus = event_bus
        self._token = token or CancellationToken()
        self._phase = phase_tracker or PhaseTracker(listener=self._publish_phase)
        self._protected_app_probe = protected_app_probe
        self._supervisor: MonitorSupervisor | None = None

    @property
    def phase_tracker(self) -> PhaseTracker:
        """Read-only access for the interrupt handler."""
        return self._phase

    @property
    def active_monitors(self) -> list[str]:
        """Names of monitors running right now; empty between steps."""
        if self._supervisor is None:
            return []
        return self._supervisor.running

    def _publish_phase(self, phase: OperationPhase) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(PhaseEvent(phase=phase))

    def _transition(self, cycle: int, state: CycleState, fill_gb: float) -> None:
        logger.debug("Cycle %d -> %s", cycle, state.value)
        if self._event_bus is not None:
            self._event_bus.publish(CycleEvent(cycle=cycle, state=state, fill_gb=fill_gb))

    async def run_cycle(self, fill_gb: float, cycle: int, is_full_mode: bool) -> CycleResult:
        """Run one cycle and return its result.

        Safety aborts (critical disk, protected application) come back as an
        ABORTED result. Compaction tool failures raise CompactionError.
        """
        label = "full pass" if is_full_mode else f"cycle {cycle}"
        logger.info(
            "Starting %s: filling %.1f GB%s",
            label,
            fill_gb,
            " (simulated)" if self._context.simulate else "",
        )
        self._transition(cycle, CycleState.INIT, fill_gb)

        if self._token.cancelled:
            return self._abort(cycle, fill_gb, AbortReason.USER_ABORT)

        try:
            fill = await self._fill_step(cycle, fill_gb)
        except Exception:
            await self._remove_filler()
            raise
        await self._remove_filler()

        if fill.abort_reason is not None:
            return self._abort(cycle, fill_gb, fill.abort_reason, written_gb=fill.written_gb)

        self._transition(cycle, CycleState.SHUTTING_DOWN, fill_gb)
        logger.info("Shutting down WSL to release %s", self._context.image_path)
        await self._ops.shutdown_subsystem()

        size_before = self._image_size_gb()
        compacted = await self._compact_step(cycle, fill_gb)
        if not compacted:
            return self._abort(
                cycle,
                fill_gb,
                AbortReason.PROTECTED_APP,
                written_gb=fill.written_gb,
                fill_skipped=fill.skipped,
            )

        size_after = self._image_size_gb()
        reclaimed = None
        if size_before is not None and size_after is not None:
            reclaimed = max(0.0, size_before - size_after)

        self._transition(cycle, CycleState.DONE, fill_gb)
        if reclaimed is not None:
            logger.info("Finished %s: reclaimed %.2f GB", label, reclaimed)
        else:
            logger.info("Finished %s", label)
        return CycleResult(
            cycle=cycle,
            state=CycleState.DONE,
            written_gb=fill.written_gb,
            reclaimed_gb=reclaimed,
            fill_skipped=fill.skipped,
        )

    def _abort(
        self,
        cycle: int,
        fill_gb: float,
        reason: AbortReason,
        written_gb: float = 0.0,
        fill_skipped: bool = False,
    ) -> CycleResult:
        self._transition(cycle, CycleState.ABORTED, fill_gb)
        logger.warning("Cycle %d aborted: %s", cycle, reason.value)
        return CycleResult(
            cycle=cycle,
            state=CycleState.ABORTED,
            written_gb=written_gb,
            abort_reason=reason,
            fill_skipped=fill_skipped,
        )

    def _image_size_gb(self) -> float | None:
        try:
            return self._stats.file_size_gb(self._context.image_path)
        except OSError as e:
            logger.warning("Cannot read size of %s: %s", self._context.image_path, e)
            return None

    def _critical_gb(self) -> float:
        return self._context.min_free_gb * self._context.config.thresholds.critical_ratio

    async def _resolve(self, alert: CriticalDiskAlert) -> AlertAction:
        """Ask the resolver on a daemon thread.

        Resolvers may block on console input. When the run is cancelled the
        question is abandoned: the thread is not awaited and cannot keep the
        process alive at exit.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[AlertAction] = loop.create_future()

        def settle(action: AlertAction | None, error: Exception | None) -> None:
            if future.done():  # Cancelled while the question was open
                return
            if error is not None:
                future.set_exception(error)
            elif action is not None:
                future.set_result(action)

        def ask() -> None:
            action: AlertAction | None = None
            error: Exception | None = None
            try:
                action = self._resolver(alert)
            except Exception as e:
                error = e
            if not loop.is_closed():
                loop.call_soon_threadsafe(settle, action, error)

        threading.Thread(target=ask, name="alert-resolver", daemon=True).start()
        return await future

    async def _fill_step(self, cycle: int, fill_gb: float) -> _FillOutcome:
        # Last point where declining costs nothing: nothing written yet
        free_gb = self._stats.free_gb(self._context.host_drive)
        if free_gb < self._critical_gb():
            action = await self._resolve(CriticalDiskAlert(free_gb=free_gb))
            if action == AlertAction.ABORT:
                return _FillOutcome(abort_reason=AbortReason.CRITICAL_DISK)
            if action == AlertAction.SKIP_TO_COMPACTION:
                logger.info("Skipping the fill of cycle %d", cycle)
                self._transition(cycle, CycleState.SKIPPED, fill_gb)
                return _FillOutcome(skipped=True)

        monitors = self._context.config.monitors
        with self._phase.enter(OperationPhase.ZERO_FILL):
            self._transition(cycle, CycleState.FILLING, fill_gb)
            async with MonitorSupervisor() as supervisor:
                self._supervisor = supervisor
                try:
                    supervisor.start(
                        FillProgressMonitor(self._ops.filled_bytes, gb_to_bytes(fill_gb), monitors.progress_interval)
                    )
                    supervisor.start(
                        DiskSpaceMonitor(
                            self._stats,
                            self._context.host_drive,
                            self._context.min_free_gb,
                            self._context.config.thresholds.critical_ratio,
                            monitors.disk_interval,
                        )
                    )
                    process = await self._ops.start_fill(fill_gb)
                    try:
                        action = await self._supervise_fill(cycle, process, supervisor)
                    finally:
                        if process.running:
                            await process.terminate()
                finally:
                    self._supervisor = None
            written_gb = bytes_to_gb(await self._ops.filled_bytes())

        logger.info("Wrote %.1f GB of zeros", written_gb)
        if action == AlertAction.ABORT:
            return _FillOutcome(written_gb=written_gb, abort_reason=AbortReason.CRITICAL_DISK)
        if action == AlertAction.SKIP_TO_COMPACTION:
            self._transition(cycle, CycleState.SKIPPED, fill_gb)
            return _FillOutcome(written_gb=written_gb, skipped=True)
        self._transition(cycle, CycleState.FILLED, fill_gb)
        return _FillOutcome(written_gb=written_gb)

    async def _supervise_fill(
        self,
        cycle: int,
        process: Process,
        supervisor: MonitorSupervisor,
    ) -> AlertAction | None:
        """Consume alerts until the fill ends. Returns the action that ended it early."""
        poll = self._context.config.monitors.alert_poll_interval
        low_reported = False
        critical_resolved = False
        wait_task = asyncio.ensure_future(process.wait())
        try:
            while True:
                done, _ = await asyncio.wait({wait_task}, timeout=poll)
                for alert in supervisor.drain():
                    if isinstance(alert, ProgressAlert):
                        logger.log(LogLevel.FULL, "Fill progress %d%%", alert.percent)
                        if self._event_bus is not None:
                            self._event_bus.publish(
                                ProgressEvent(cycle=cycle, percent=alert.percent, bytes_written=alert.bytes_written)
                            )
                    elif isinstance(alert, LowDiskAlert):
                        if not low_reported:
                            low_reported = True
                            logger.warning("Host free space below minimum: %.1f GB", alert.free_gb)
                    elif isinstance(alert, CriticalDiskAlert):
                        if critical_resolved or done:
                            logger.warning("Host free space critical: %.1f GB", alert.free_gb)
                            continue
                        critical_resolved = True
                        action = await self._resolve(alert)
                        if action != AlertAction.CONTINUE:
                            logger.info("Stopping the fill (%s)", action.value)
                            await process.terminate()
                            return action
                        logger.warning("Continuing the fill with critically low host free space")
                    else:
                        logger.debug("Ignoring %s during the fill", type(alert).__name__)

                if done:
                    result: CommandResult = wait_task.result()
                    if not result.success:
                        logger.warning(
                            "Fill exited with code %d (expected when the disk fills up): %s",
                            result.exit_code,
                            result.stderr.strip(),
                        )
                    return None
        finally:
            if not wait_task.done():
                wait_task.cancel()
                await asyncio.wait({wait_task})

    async def _remove_filler(self) -> None:
        with self._phase.enter(OperationPhase.CLEANUP):
            await self._ops.remove_filler()

    async def _compact_step(self, cycle: int, fill_gb: float) -> bool:
        """Compact the image. Returns False when a protected application aborted it."""
        names = self._context.config.protected_apps
        interval = self._context.config.monitors.protected_app_interval
        monitor = ProtectedAppMonitor(names, interval, probe=self._protected_app_probe)

        with self._phase.enter(OperationPhase.COMPACTION):
            self._transition(cycle, CycleState.COMPACTING, fill_gb)
            found = [a for a in await monitor.check() if isinstance(a, ProtectedAppAlert)]
            if found:
                self._report_protected_app(found[0])
                return False

            async with MonitorSupervisor() as supervisor:
                self._supervisor = supervisor
                try:
                    supervisor.start(monitor)
                    process = await self._ops.start_compaction()
                    wait_task = asyncio.ensure_future(process.wait())
                    try:
                        while True:
                            done, _ = await asyncio.wait({wait_task}, timeout=interval)
                            alerts = [a for a in supervisor.drain() if isinstance(a, ProtectedAppAlert)]
                            if alerts and not done:
                                self._report_protected_app(alerts[0])
                                await process.terminate()
                                await self._ops.abandon_compaction()
                                return False
                            if done:
                                self._ops.finish_compaction(wait_task.result())
                                return True
                    finally:
                        if not wait_task.done():
                            wait_task.cancel()
                            await asyncio.wait({wait_task})
                finally:
                    self._supervisor = None

    def _report_protected_app(self, alert: ProtectedAppAlert) -> None:
        logger.critical(
            "%s (pid %d) is running; compaction of %s abandoned",
            alert.name or "A protected application",
            alert.pid,
            self._context.image_path,
        )
