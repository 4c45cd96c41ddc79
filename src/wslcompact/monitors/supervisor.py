"""Supervisor owning the lifetime of background monitors and their alerts."""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from wslcompact.models import Alert

from .base import Monitor

__all__ = ["MonitorHandle", "MonitorSupervisor"]

logger = logging.getLogger(__name__)


class MonitorHandle:
    """Opaque handle to a running monitor.

    Owns the monitor's task and its private alert queue. Only the supervisor
    that created it can stop it.
    """

    def __init__(self, monitor: Monitor) -> None:
        self._monitor = monitor
        self._queue: asyncio.Queue[Alert] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def name(self) -> str:
        return self._monitor.name

    @property
    def active(self) -> bool:
        return not self._closed

    def _emit(self, alert: Alert) -> None:
        if not self._closed:
            self._queue.put_nowait(alert)

    def _take_all(self) -> list[Alert]:
        alerts: list[Alert] = []
        while not self._queue.empty():
            alerts.append(self._queue.get_nowait())
        return alerts


class MonitorSupervisor:
    """Runs monitors concurrently with an external operation.

    Use as an async context manager: every monitor started inside the block is
    stopped when the block exits, whatever the exit path.

    After :meth:`stop` returns for a handle, no alert of that monitor is
    delivered any more: its task has finished and undelivered alerts are
    discarded.
    """

    def __init__(self) -> None:
        self._handles: list[MonitorHandle] = []

    async def __aenter__(self) -> MonitorSupervisor:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop_all()

    @property
    def running(self) -> list[str]:
        """Names of monitors not stopped yet."""
        return [h.name for h in self._handles]

    def start(self, monitor: Monitor) -> MonitorHandle:
        """Start a monitor as a background task."""
        handle = MonitorHandle(monitor)
        handle._task = asyncio.create_task(monitor.run(handle._emit), name=f"monitor:{monitor.name}")
        self._handles.append(handle)
        logger.debug("Started %s monitor", monitor.name)
        return handle

    async def stop(self, handle: MonitorHandle) -> None:
        """Stop one monitor and wait until its task has finished."""
        if handle._closed:
            return
        handle._closed = True
        if handle in self._handles:
            self._handles.remove(handle)
        await self._finish([handle])

    async def stop_all(self) -> None:
        """Stop every monitor started by this supervisor."""
        handles = self._handles
        self._handles = []
        for handle in handles:
            handle._closed = True
        await self._finish(handles)

    async def _finish(self, handles: list[MonitorHandle]) -> None:
        tasks = [h._task for h in handles if h._task is not None]
        for task in tasks:
            task.cancel()
        try:
            if tasks:
                await asyncio.wait(tasks)
        finally:
            for handle in handles:
                handle._take_all()  # Discard what was never delivered
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception() is not None:
                    logger.warning("Monitor task ended with error: %s", task.exception())
            for handle in handles:
                logger.debug("Stopped %s monitor", handle.name)

    def drain(self) -> list[Alert]:
        """Return every pending alert of the running monitors.

        Alerts of one monitor keep their emission order; no order is implied
        between monitors.
        """
        alerts: list[Alert] = []
        for handle in self._handles:
            alerts.extend(handle._take_all())
        return alerts
