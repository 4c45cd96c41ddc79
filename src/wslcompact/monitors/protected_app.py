"""Detection of applications that must not run while the image is compacted."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import ClassVar

import psutil

from wslcompact.models import Alert, ProtectedAppAlert

from .base import Monitor

__all__ = ["ProtectedAppMonitor", "find_protected_process"]


def find_protected_process(names: Iterable[str]) -> ProtectedAppAlert | None:
    """Return the first running process whose name is protected, if any.

    Names compare case-insensitively.
    """
    wanted = {n.lower() for n in names}
    if not wanted:
        return None
    for proc in psutil.process_iter(["pid", "name"]):
        name = proc.info.get("name") or ""
        if name.lower() in wanted:
            return ProtectedAppAlert(pid=proc.info["pid"], name=name)
    return None


class ProtectedAppMonitor(Monitor):
    """Emits ProtectedAppAlert while a protected application is running."""

    name: ClassVar[str] = "protected_app"

    def __init__(
        self,
        process_names: Iterable[str],
        interval: float,
        probe: Callable[[Iterable[str]], ProtectedAppAlert | None] | None = None,
    ) -> None:
        super().__init__(interval)
        self._process_names = tuple(process_names)
        self._probe = probe or find_protected_process

    async def check(self) -> list[Alert]:
        # Walking the process table can take a moment on busy hosts
        found = await asyncio.to_thread(self._probe, self._process_names)
        return [found] if found is not None else []
