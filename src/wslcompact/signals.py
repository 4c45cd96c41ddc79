"""Phase-aware interrupt handling.

Two tiers:

- :class:`CancellationToken` is cooperative. The orchestrator and engine
  check it at safe points (between cycles, before committing to a fill).
- :class:`InterruptHandler` adapts OS signals onto that token and onto the
  running asyncio task, according to the phase active at delivery time.

While the image is being compacted an interrupt is refused: the handler
neither sets the token nor cancels the task, and tells the user to wait.
Compaction rewrites on-disk structures non-atomically and an interrupted
compaction leaves the image unusable. This is the one place where the
process deliberately does not honor Ctrl+C.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading
from enum import StrEnum
from typing import Any

from rich.console import Console
from rich.panel import Panel

from wslcompact.models import OperationPhase
from wslcompact.phase import PhaseTracker

__all__ = [
    "CancellationToken",
    "InterruptHandler",
    "InterruptOutcome",
    "install_signal_handlers",
]

logger = logging.getLogger(__name__)

COMPACTION_WARNING = (
    "[bold]The virtual disk is being compacted.[/bold]\n"
    "Interrupting now would corrupt the image beyond repair.\n"
    "Ctrl+C is ignored until compaction finishes. Please wait; do not close this "
    "window and do not retry."
)
ZERO_FILL_NOTICE = (
    "Interrupted during zero-fill. It is safe to exit: the image has not been "
    "modified and the partial filler file is removed on the next run."
)


class InterruptOutcome(StrEnum):
    """What the handler did with an interrupt."""

    BLOCKED = "blocked"
    ALLOWED = "allowed"


class CancellationToken:
    """Thread-safe cooperative cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class InterruptHandler:
    """Applies the phase-dependent policy to SIGINT (and SIGBREAK on Windows).

    Policy by phase, read at the instant of delivery:

    - COMPACTION: blocked, persistent critical warning.
    - ZERO_FILL: allowed, with a message that exiting is safe.
    - CLEANUP / SAFE: allowed silently.
    """

    def __init__(
        self,
        phase_tracker: PhaseTracker,
        token: CancellationToken,
        console: Console | None = None,
    ) -> None:
        self._phase_tracker = phase_tracker
        self._token = token
        self._console = console or Console(stderr=True)
        self._original_handlers: dict[int, Any] = {}
        self._lock = threading.RLock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[Any] | None = None
        self.blocked_count = 0

    def attach(self, loop: asyncio.AbstractEventLoop, task: asyncio.Task[Any]) -> None:
        """Register the task cancelled when an interrupt is allowed."""
        with self._lock:
            self._loop = loop
            self._task = task

    def handle_interrupt(self, signal_num: int, frame: Any) -> InterruptOutcome:
        """Handle an interrupt signal according to the current phase.

        Args:
            signal_num: Signal number
            frame: Current stack frame (unused)

        Returns:
            InterruptOutcome.BLOCKED or InterruptOutcome.ALLOWED
        """
        phase = self._phase_tracker.current

        if phase == OperationPhase.COMPACTION:
            self.blocked_count += 1
            logger.critical("Interrupt refused: compaction in progress", extra={"signal": signal_num})
            self._console.print(
                Panel(
                    COMPACTION_WARNING,
                    title="[bold red]COMPACTION IN PROGRESS - DO NOT INTERRUPT[/bold red]",
                    border_style="bold red",
                )
            )
            return InterruptOutcome.BLOCKED

        if phase == OperationPhase.ZERO_FILL:
            logger.warning("Interrupted during zero-fill")
            self._console.print(f"\n[yellow]{ZERO_FILL_NOTICE}[/yellow]")
        else:
            logger.info("Interrupted during %s phase", phase.value)

        self._token.cancel()
        with self._lock:
            loop, task = self._loop, self._task
        if loop is not None and task is not None and not task.done():
            # Wakes the loop if it is blocked waiting for I/O
            loop.call_soon_threadsafe(task.cancel)
        return InterruptOutcome.ALLOWED

    def install_handlers(self) -> None:
        """Install signal handlers."""
        self._original_handlers[signal.SIGINT] = signal.signal(signal.SIGINT, self.handle_interrupt)
        sigbreak = getattr(signal, "SIGBREAK", None)
        if sigbreak is not None:
            self._original_handlers[sigbreak] = signal.signal(sigbreak, self.handle_interrupt)

    def _restore_handlers(self) -> None:
        """Restore original signal handlers."""
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)

    def cleanup(self) -> None:
        """Cleanup and restore original signal handlers."""
        self._restore_handlers()
        self._original_handlers.clear()


def install_signal_handlers(
    phase_tracker: PhaseTracker,
    token: CancellationToken,
    console: Console | None = None,
) -> InterruptHandler:
    """Create an InterruptHandler and install it for SIGINT.

    Returns:
        InterruptHandler instance; call cleanup() to restore previous handlers
    """
    handler = InterruptHandler(phase_tracker, token, console)
    handler.install_handlers()
    return handler
