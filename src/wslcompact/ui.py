"""Terminal UI with Rich Live display for cycle progress, and the run summary."""

from __future__ import annotations

import asyncio
from typing import Any

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn
from rich.table import Table
from rich.text import Text

from wslcompact.events import CycleEvent, PhaseEvent, ProgressEvent
from wslcompact.models import CycleState, OperationPhase
from wslcompact.orchestrator import RunSummary

__all__ = ["TerminalUI", "render_summary"]

_PHASE_STYLES = {
    OperationPhase.SAFE: "green",
    OperationPhase.ZERO_FILL: "yellow",
    OperationPhase.CLEANUP: "cyan",
    OperationPhase.COMPACTION: "bold red",
}

_STATE_LABELS = {
    CycleState.INIT: "starting",
    CycleState.FILLING: "zero-filling free space",
    CycleState.SKIPPED: "fill skipped",
    CycleState.FILLED: "fill complete",
    CycleState.SHUTTING_DOWN: "shutting down WSL",
    CycleState.COMPACTING: "compacting image (do not interrupt)",
    CycleState.DONE: "done",
    CycleState.ABORTED: "aborted",
}


class TerminalUI:
    """Rich terminal UI showing the phase, the current cycle and fill progress.

    Updates at 10 Hz while the live display is running.
    """

    def __init__(self, console: Console, max_cycles: int | None = None) -> None:
        """Initialize the terminal UI.

        Args:
            console: Rich console for rendering
            max_cycles: Planned number of cycles, shown as "Cycle N/M"
        """
        self._console = console
        self._max_cycles = max_cycles
        self._phase = OperationPhase.SAFE
        self._cycle = 0
        self._state: CycleState | None = None

        self._progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            expand=True,
        )
        self._fill_tasks: dict[int, TaskID] = {}
        self._live: Live | None = None

    def _render(self) -> RenderableType:
        status = Table.grid(padding=(0, 2))
        status.add_column(justify="left")
        status.add_column(justify="right")

        phase_text = Text()
        phase_text.append("Phase: ", style="dim")
        phase_text.append(self._phase.value, style=_PHASE_STYLES[self._phase])

        cycle_text = Text()
        if self._cycle:
            total = f"/{self._max_cycles}" if self._max_cycles else ""
            cycle_text.append(f"Cycle {self._cycle}{total}", style="cyan")
            if self._state is not None:
                cycle_text.append(f"  {_STATE_LABELS[self._state]}", style="dim")

        status.add_row(phase_text, cycle_text)
        return Group(status, self._progress)

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def start(self) -> None:
        """Start the live display."""
        self._live = Live(
            self._render(),
            console=self._console,
            refresh_per_second=10,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display."""
        if self._live:
            self._live.stop()
            self._live = None

    def set_phase(self, phase: OperationPhase) -> None:
        self._phase = phase
        self._refresh()

    def set_cycle_state(self, cycle: int, state: CycleState, fill_gb: float) -> None:
        self._cycle = cycle
        self._state = state
        if state == CycleState.FILLING and cycle not in self._fill_tasks:
            self._fill_tasks[cycle] = self._progress.add_task(
                f"[cyan]Cycle {cycle}[/cyan]: filling {fill_gb:.1f} GB",
                total=100,
            )
        elif state in (CycleState.FILLED, CycleState.SKIPPED) and cycle in self._fill_tasks:
            task_id = self._fill_tasks[cycle]
            if state == CycleState.FILLED:
                self._progress.update(task_id, completed=100)
            self._progress.stop_task(task_id)
        self._refresh()

    def update_fill_progress(self, cycle: int, percent: int) -> None:
        task_id = self._fill_tasks.get(cycle)
        if task_id is None:
            return
        self._progress.update(task_id, completed=percent)
        self._refresh()

    async def consume_events(self, queue: asyncio.Queue[Any]) -> None:
        """Consume events from an EventBus queue until the shutdown sentinel."""
        while True:
            event = await queue.get()
            if event is None:  # Shutdown sentinel
                break

            if isinstance(event, PhaseEvent):
                self.set_phase(event.phase)
            elif isinstance(event, CycleEvent):
                self.set_cycle_state(event.cycle, event.state, event.fill_gb)
            elif isinstance(event, ProgressEvent):
                self.update_fill_progress(event.cycle, event.percent)


def _gb(value: float | None) -> str:
    return "-" if value is None else f"{value:.2f} GB"


def render_summary(summary: RunSummary) -> Table:
    """Build the end-of-run table: per-cycle rows plus totals."""
    title = "Compaction summary" + (" (simulated)" if summary.simulate else "")
    table = Table(title=title, show_footer=True)
    table.add_column("Cycle", footer="Total")
    table.add_column("Result")
    table.add_column("Written", justify="right", footer=_gb(summary.total_written_gb))
    table.add_column("Reclaimed", justify="right", footer=_gb(summary.total_reclaimed_gb))

    for result in summary.cycles:
        if result.success:
            outcome = "[green]done[/green]"
            if result.fill_skipped:
                outcome += " [dim](fill skipped)[/dim]"
        else:
            reason = result.abort_reason.value if result.abort_reason else "unknown"
            outcome = f"[red]aborted[/red] [dim]({reason})[/dim]"
        table.add_row(str(result.cycle), outcome, _gb(result.written_gb), _gb(result.reclaimed_gb))

    table.caption = (
        f"mode {summary.mode.value}, stopped: {summary.stop_reason.value if summary.stop_reason else '-'}\n"
        f"image {_gb(summary.initial_image_gb)} -> {_gb(summary.final_image_gb)}, "
        f"host free {_gb(summary.initial_free_gb)} -> {_gb(summary.final_free_gb)}"
    )
    return table
