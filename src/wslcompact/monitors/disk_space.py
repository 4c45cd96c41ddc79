"""Host disk space monitor."""

from __future__ import annotations

import logging
from typing import ClassVar

from wslcompact.disk import DiskStatProvider
from wslcompact.models import Alert, CriticalDiskAlert, LogLevel, LowDiskAlert

from .base import Monitor

__all__ = ["DiskSpaceMonitor"]

logger = logging.getLogger(__name__)


class DiskSpaceMonitor(Monitor):
    """Watches free space of the drive holding the image.

    Emits LowDiskAlert below ``min_free_gb`` and CriticalDiskAlert below
    ``critical_ratio * min_free_gb``. Emits on every tick the condition holds;
    deduplication is the consumer's business.
    """

    name: ClassVar[str] = "disk_space"

    def __init__(
        self,
        stats: DiskStatProvider,
        drive: str,
        min_free_gb: float,
        critical_ratio: float,
        interval: float,
    ) -> None:
        super().__init__(interval)
        self._stats = stats
        self._drive = drive
        self._min_free_gb = min_free_gb
        self._critical_gb = min_free_gb * critical_ratio

    async def check(self) -> list[Alert]:
        free_gb = self._stats.free_gb(self._drive)
        logger.log(LogLevel.FULL, "Host free space on %s: %.1f GB", self._drive, free_gb)

        if free_gb < self._critical_gb:
            return [CriticalDiskAlert(free_gb=free_gb)]
        if free_gb < self._min_free_gb:
            return [LowDiskAlert(free_gb=free_gb)]
        return []
