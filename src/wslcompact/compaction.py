"""Host-side virtual disk compaction: Optimize-VHD, or diskpart as fallback."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from wslcompact.executor import LocalExecutor, LocalProcess
from wslcompact.models import CommandResult, CompactionError

__all__ = ["CompactionTool", "ImageCompactor"]

logger = logging.getLogger(__name__)

POWERSHELL = "powershell.exe"
DISKPART = "diskpart.exe"
DETACH_TIMEOUT = 120
DISKPART_ERROR = "DiskPart has encountered an error"


class CompactionTool:
    """Names of the supported compaction back-ends."""

    OPTIMIZE_VHD = "Optimize-VHD"
    DISKPART = "diskpart"


def _powershell_args(script: str) -> list[str]:
    return [
        POWERSHELL,
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
        script,
    ]


def _write_script(content: str) -> Path:
    fd, name = tempfile.mkstemp(prefix="wsl-compact-", suffix=".txt", text=True)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return Path(name)


def _ps_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def diskpart_script(image_path: Path) -> str:
    """diskpart commands compacting a detached vdisk in place."""
    return "\n".join(
        [
            f'select vdisk file="{image_path}"',
            "attach vdisk readonly",
            "compact vdisk",
            "detach vdisk",
            "exit",
        ]
    )


def diskpart_detach_script(image_path: Path) -> str:
    """diskpart commands releasing a vdisk left attached by a terminated compaction."""
    return "\n".join([f'select vdisk file="{image_path}"', "detach vdisk", "exit"])


class ImageCompactor:
    """Compacts a .vhdx file in place.

    Optimize-VHD (Hyper-V PowerShell module) is used when present; otherwise
    the image is compacted through a diskpart script.
    """

    def __init__(self, executor: LocalExecutor | None = None) -> None:
        self._executor = executor or LocalExecutor()
        self._tool: str | None = None
        self._script_path: Path | None = None
        self._image_path: Path | None = None

    @property
    def tool(self) -> str | None:
        """Back-end chosen by the last select_tool() call."""
        return self._tool

    async def optimize_vhd_available(self) -> bool:
        result = await self._executor.run_args(
            _powershell_args("if (Get-Command Optimize-VHD -ErrorAction SilentlyContinue) { exit 0 } else { exit 1 }"),
            timeout=60,
        )
        return result.success

    async def select_tool(self) -> str:
        """Pick the primary tool, falling back to diskpart when it is unavailable."""
        if await self.optimize_vhd_available():
            self._tool = CompactionTool.OPTIMIZE_VHD
        else:
            logger.info("Optimize-VHD is not available, falling back to diskpart")
            self._tool = CompactionTool.DISKPART
        return self._tool

    async def start(self, image_path: Path) -> LocalProcess:
        """Start compaction and return the running process.

        The process runs in its own process group so a console Ctrl+C cannot
        reach it.
        """
        tool = self._tool or await self.select_tool()
        if tool == CompactionTool.OPTIMIZE_VHD:
            script = f"Optimize-VHD -Path {_ps_quote(str(image_path))} -Mode Full"
            return await self._executor.start_args(_powershell_args(script), isolate=True)

        self._image_path = image_path
        self._script_path = _write_script(diskpart_script(image_path))
        return await self._executor.start_args([DISKPART, "/s", str(self._script_path)], isolate=True)

    def finish(self, image_path: Path, result: CommandResult) -> None:
        """Check a finished compaction and remove temporary files.

        Raises:
            CompactionError: If the tool reported a failure
        """
        self._image_path = None
        self._remove_script()
        tool = self._tool or CompactionTool.OPTIMIZE_VHD
        failed = not result.success
        # diskpart exits 0 even when a command inside the script failed
        if tool == CompactionTool.DISKPART and DISKPART_ERROR in result.stdout:
            failed = True
        if failed:
            detail = (result.stderr or result.stdout).strip() or f"exit code {result.exit_code}"
            raise CompactionError(image_path, tool, detail)
        logger.info("Compaction finished with %s", tool)

    async def abandon(self) -> None:
        """Clean up after a compaction that was terminated.

        A diskpart compaction killed mid-way leaves the vdisk attached, which
        keeps WSL from starting the distribution. It is detached here.
        """
        self._remove_script()
        image_path, self._image_path = self._image_path, None
        if self._tool != CompactionTool.DISKPART or image_path is None:
            return

        script = _write_script(diskpart_detach_script(image_path))
        try:
            result = await self._executor.run_args([DISKPART, "/s", str(script)], timeout=DETACH_TIMEOUT)
        except TimeoutError:
            logger.warning("diskpart did not detach %s within %ds", image_path, DETACH_TIMEOUT)
            return
        finally:
            script.unlink(missing_ok=True)
        if not result.success or DISKPART_ERROR in result.stdout:
            logger.warning("Could not detach %s: %s", image_path, (result.stderr or result.stdout).strip())
        else:
            logger.info("Detached %s after the terminated compaction", image_path)

    def _remove_script(self) -> None:
        if self._script_path is not None:
            self._script_path.unlink(missing_ok=True)
            self._script_path = None
