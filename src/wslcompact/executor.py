"""Command execution on the host and inside the WSL subsystem."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import sys
from collections.abc import Sequence
from typing import Any, Protocol

from wslcompact.models import CommandResult, LogLevel

__all__ = [
    "WSL_EXECUTABLE",
    "LocalExecutor",
    "LocalProcess",
    "Process",
    "WslExecutor",
    "find_wsl_executable",
]

logger = logging.getLogger(__name__)

WSL_EXECUTABLE = "wsl.exe"


class Process(Protocol):
    """Handle for a running fill or compaction process.

    Commands are non-interactive; stdin is never connected.
    """

    async def wait(self) -> CommandResult:
        """Wait for process to complete and return result."""
        ...

    async def terminate(self) -> None:
        """Terminate the process."""
        ...

    @property
    def running(self) -> bool:
        """True until the process has exited."""
        ...


def _isolation_kwargs() -> dict[str, Any]:
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _decode(data: bytes | None) -> str:
    # wsl.exe itself writes UTF-16LE; commands run inside the distro write UTF-8
    if not data:
        return ""
    if data[1:2] == b"\x00":
        return data.decode("utf-16-le", errors="replace")
    return data.decode("utf-8", errors="replace")


class LocalProcess:
    """Process wrapper for an asyncio subprocess."""

    def __init__(self, proc: asyncio.subprocess.Process) -> None:
        self._proc = proc

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    async def wait(self) -> CommandResult:
        """Wait for process to complete and return result."""
        stdout_bytes, stderr_bytes = await self._proc.communicate()
        return CommandResult(
            exit_code=self._proc.returncode or 0,
            stdout=_decode(stdout_bytes),
            stderr=_decode(stderr_bytes),
        )

    async def terminate(self) -> None:
        """Terminate the process."""
        if self._proc.returncode is None:
            self._proc.terminate()
        await self._proc.wait()


class LocalExecutor:
    """Executes commands on the host via async subprocess."""

    async def _spawn(self, args: Sequence[str], isolate: bool = False) -> asyncio.subprocess.Process:
        logger.log(LogLevel.FULL, "Executing %s", " ".join(args))
        return await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **(_isolation_kwargs() if isolate else {}),
        )

    async def run_args(
        self,
        args: Sequence[str],
        timeout: float | None = None,
    ) -> CommandResult:
        """Run an argument vector and wait for completion.

        Args:
            args: Program and arguments, no shell involved
            timeout: Optional timeout in seconds

        Returns:
            CommandResult with exit code, stdout, and stderr
        """
        proc = await self._spawn(args)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError:
            proc.terminate()
            await proc.wait()
            raise
        return CommandResult(
            exit_code=proc.returncode or 0,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
        )

    async def start_args(self, args: Sequence[str], isolate: bool = False) -> LocalProcess:
        """Start a long-running process from an argument vector.

        Args:
            args: Program and arguments, no shell involved
            isolate: Run in its own process group so console Ctrl+C does not reach it
        """
        return LocalProcess(await self._spawn(args, isolate=isolate))


class WslExecutor:
    """Runs shell commands inside a WSL distribution through wsl.exe.

    Every command is executed as root with ``sh -c`` so filler writes and
    removal in the distribution root are permitted.
    """

    def __init__(
        self,
        distro: str | None = None,
        local: LocalExecutor | None = None,
        wsl_executable: str = WSL_EXECUTABLE,
    ) -> None:
        self._distro = distro
        self._local = local or LocalExecutor()
        self._wsl = wsl_executable

    def _wrap(self, cmd: str) -> list[str]:
        args = [self._wsl]
        if self._distro:
            args += ["--distribution", self._distro]
        return [*args, "--user", "root", "--exec", "sh", "-c", cmd]

    async def run_command(
        self,
        cmd: str,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command inside the distribution and wait for completion."""
        return await self._local.run_args(self._wrap(cmd), timeout=timeout)

    async def start_process(self, cmd: str) -> LocalProcess:
        """Start a long-running command inside the distribution."""
        return await self._local.start_args(self._wrap(cmd))

    async def shutdown(self) -> CommandResult:
        """Shut down every WSL distribution so the image file is released."""
        logger.log(LogLevel.FULL, "Running %s --shutdown", self._wsl)
        return await self._local.run_args([self._wsl, "--shutdown"], timeout=120)


def find_wsl_executable() -> str | None:
    """Return the path of wsl.exe, or None when WSL is not installed."""
    return shutil.which(WSL_EXECUTABLE)
