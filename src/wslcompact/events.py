"""Event system for decoupled progress reporting and run tracing."""

from __future__ import annotations

from typing import TypeAlias

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from wslcompact.models import CycleState, OperationPhase

__all__ = [
    "CycleEvent",
    "EventBus",
    "PhaseEvent",
    "ProgressEvent",
]


@dataclass(frozen=True)
class PhaseEvent:
    """Published whenever the phase tracker changes value."""

    phase: OperationPhase
    timestamp: datetime = field(default_factory=datetime.now, compare=False)


@dataclass(frozen=True)
class CycleEvent:
    """Published on every cycle state transition."""

    cycle: int
    state: CycleState
    fill_gb: float
    timestamp: datetime = field(default_factory=datetime.now, compare=False)


@dataclass(frozen=True)
class ProgressEvent:
    """Filler progress, forwarded from ProgressAlert for the UI."""

    cycle: int
    percent: int
    bytes_written: int
    timestamp: datetime = field(default_factory=datetime.now, compare=False)


Event: TypeAlias = PhaseEvent | CycleEvent | ProgressEvent


class EventBus:
    """Fans run events out to the UI and any other subscriber.

    Each subscriber drains its own unbounded queue, so a slow renderer never
    delays the cycle engine.
    """

    def __init__(self) -> None:
        self._consumers: list[asyncio.Queue[Event | None]] = []
        self._closed = False

    def subscribe(self) -> asyncio.Queue[Event | None]:
        """Queue of events published from now on; ``None`` marks the end of the run."""
        queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._consumers.append(queue)
        return queue

    def publish(self, event: Event) -> None:
        if self._closed:
            return
        for queue in self._consumers:
            queue.put_nowait(event)

    def close(self) -> None:
        """End the run for every subscriber. Later events are ignored."""
        if self._closed:
            return
        self._closed = True
        for queue in self._consumers:
            queue.put_nowait(None)
