"""Filler progress monitor."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import ClassVar

from wslcompact.models import Alert, ProgressAlert

from .base import Monitor

__all__ = ["FillProgressMonitor"]


class FillProgressMonitor(Monitor):
    """Polls how much filler has been written and reports percent of target."""

    name: ClassVar[str] = "fill_progress"

    def __init__(
        self,
        probe: Callable[[], Awaitable[int]],
        target_bytes: int,
        interval: float,
    ) -> None:
        """Initialize progress monitor.

        Args:
            probe: Returns the number of filler bytes written so far
            target_bytes: Filler size that counts as 100%
            interval: Seconds between polls
        """
        super().__init__(interval)
        self._probe = probe
        self._target_bytes = max(1, target_bytes)

    async def check(self) -> list[Alert]:
        written = await self._probe()
        percent = min(100, max(0, written * 100 // self._target_bytes))
        return [ProgressAlert(percent=percent, bytes_written=written)]
