"""Host disk statistics: free space and image file size."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import psutil

__all__ = [
    "GB",
    "DiskSpace",
    "DiskStatProvider",
    "HostDiskStats",
    "bytes_to_gb",
    "drive_root",
    "gb_to_bytes",
]

GB = 1024**3


@dataclass(frozen=True)
class DiskSpace:
    """Disk space information for a host drive."""

    total_bytes: int
    used_bytes: int
    available_bytes: int
    drive: str

    @property
    def free_gb(self) -> float:
        return bytes_to_gb(self.available_bytes)


class DiskStatProvider(Protocol):
    """Reads host free space and image size on demand."""

    def free_gb(self, drive: str) -> float:
        """Free space of the drive holding the image, in GB."""
        ...

    def file_size_gb(self, path: Path) -> float:
        """Size of the image file, in GB."""
        ...


def bytes_to_gb(value: int) -> float:
    return value / GB


def gb_to_bytes(value: float) -> int:
    return int(value * GB)


def drive_root(drive: str) -> str:
    """Turn a drive identifier ("C:", "C", "/mnt/c") into a path psutil accepts."""
    if len(drive) == 1 and drive.isalpha():
        drive = f"{drive}:"
    if len(drive) == 2 and drive[1] == ":":
        return drive + "\\"
    return drive


class HostDiskStats:
    """DiskStatProvider backed by psutil and the filesystem."""

    def check(self, drive: str) -> DiskSpace:
        """Read full disk usage for a drive.

        Raises:
            RuntimeError: If the drive cannot be queried
        """
        try:
            usage = psutil.disk_usage(drive_root(drive))
        except OSError as e:
            raise RuntimeError(f"Cannot read free space of {drive}: {e}") from e
        return DiskSpace(
            total_bytes=usage.total,
            used_bytes=usage.used,
            available_bytes=usage.free,
            drive=drive,
        )

    def free_gb(self, drive: str) -> float:
        return self.check(drive).free_gb

    def file_size_gb(self, path: Path) -> float:
        return bytes_to_gb(path.stat().st_size)
