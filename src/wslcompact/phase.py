"""Process-wide operation phase, consulted by the interrupt handler."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from wslcompact.models import OperationPhase

__all__ = ["PhaseTracker", "PhaseTransitionError"]

logger = logging.getLogger(__name__)


class PhaseTransitionError(RuntimeError):
    """Raised when a risky phase is entered while another one is active."""


class PhaseTracker:
    """Single owned cell holding the current OperationPhase.

    Written only by the cycle engine on the event-loop thread, read from the
    signal handler. A phase set before an external operation starts is
    visible to a signal delivered during it.
    """

    def __init__(self, listener: Callable[[OperationPhase], None] | None = None) -> None:
        # Reentrant: the signal handler runs on the main thread, possibly while it holds the lock
        self._lock = threading.RLock()
        self._phase = OperationPhase.SAFE
        self._listener = listener

    @property
    def current(self) -> OperationPhase:
        with self._lock:
            return self._phase

    def _set(self, phase: OperationPhase) -> None:
        with self._lock:
            self._phase = phase
        logger.debug("Phase is now %s", phase.value)
        if self._listener is not None:
            self._listener(phase)

    @contextmanager
    def enter(self, phase: OperationPhase) -> Iterator[None]:
        """Hold ``phase`` for the duration of the block, then return to SAFE.

        The reset runs on every exit path, including exceptions and
        cancellation.

        Raises:
            PhaseTransitionError: If not currently SAFE
        """
        if phase == OperationPhase.SAFE:
            raise PhaseTransitionError("SAFE is the resting phase and cannot be entered")
        current = self.current
        if current != OperationPhase.SAFE:
            raise PhaseTransitionError(f"Cannot enter {phase.value} while {current.value} is active")

        self._set(phase)
        try:
            yield
        finally:
            self._set(OperationPhase.SAFE)
