"""Background monitors run alongside fill and compaction."""

from __future__ import annotations

from .base import Monitor
from .disk_space import DiskSpaceMonitor
from .fill_progress import FillProgressMonitor
from .protected_app import ProtectedAppMonitor, find_protected_process
from .supervisor import MonitorHandle, MonitorSupervisor

__all__ = [
    "DiskSpaceMonitor",
    "FillProgressMonitor",
    "Monitor",
    "MonitorHandle",
    "MonitorSupervisor",
    "ProtectedAppMonitor",
    "find_protected_process",
]
