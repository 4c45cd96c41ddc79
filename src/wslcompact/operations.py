"""Leaf operations of a cycle: real ones, and simulated ones for --simulate.

The cycle engine only talks to :class:`LeafOperations`. Swapping the
implementation is the only difference between a real and a simulated run, so
both follow the same phase, cycle and alert sequence.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from wslcompact.compaction import ImageCompactor
from wslcompact.disk import gb_to_bytes
from wslcompact.executor import Process, WslExecutor
from wslcompact.models import CommandResult, ExecutionContext

__all__ = [
    "LeafOperations",
    "RealOperations",
    "SimulatedOperations",
    "SimulatedProcess",
    "create_operations",
]

logger = logging.getLogger(__name__)

# Exit code reported for a simulated process that was terminated
_TERMINATED = -15


class LeafOperations(Protocol):
    """Actions with side effects, executed by the cycle engine."""

    async def start_fill(self, size_gb: float) -> Process:
        """Start writing ``size_gb`` of zeros into the filler file."""
        ...

    async def filled_bytes(self) -> int:
        """Current size of the filler file."""
        ...

    async def remove_filler(self) -> None:
        """Flush and delete the filler file; no-op when it does not exist."""
        ...

    async def shutdown_subsystem(self) -> None:
        """Release the image file by shutting the subsystem down."""
        ...

    async def start_compaction(self) -> Process:
        """Start compacting the image."""
        ...

    def finish_compaction(self, result: CommandResult) -> None:
        """Validate the compaction result. Raises CompactionError on failure."""
        ...

    async def abandon_compaction(self) -> None:
        """Release resources of a terminated compaction."""
        ...

    def space_sufficient(self) -> bool:
        """True when further cycles cannot reclaim anything."""
        ...


class RealOperations:
    """Leaf operations running dd inside WSL and the host compaction tool."""

    def __init__(
        self,
        context: ExecutionContext,
        runner: WslExecutor,
        compactor: ImageCompactor,
    ) -> None:
        self._context = context
        self._runner = runner
        self._compactor = compactor
        self._filler = context.config.filler_path

    async def start_fill(self, size_gb: float) -> Process:
        count_mb = max(1, int(size_gb * 1024))
        cmd = f"dd if=/dev/zero of={self._filler} bs=1M count={count_mb} status=none"
        logger.info("Writing %.1f GB of zeros to %s", size_gb, self._filler)
        return await self._runner.start_process(cmd)

    async def filled_bytes(self) -> int:
        result = await self._runner.run_command(f"stat -c %s {self._filler} 2>/dev/null || echo 0", timeout=30)
        try:
            return int(result.stdout.strip().splitlines()[-1])
        except (ValueError, IndexError):
            return 0

    async def remove_filler(self) -> None:
        result = await self._runner.run_command(f"sync; rm -f {self._filler}; sync", timeout=300)
        if not result.success:
            logger.warning(
                "Could not remove filler file %s: %s",
                self._filler,
                result.stderr.strip() or f"exit code {result.exit_code}",
            )

    async def shutdown_subsystem(self) -> None:
        result = await self._runner.shutdown()
        if not result.success:
            logger.warning("wsl --shutdown reported exit code %d: %s", result.exit_code, result.stderr.strip())

    async def start_compaction(self) -> Process:
        tool = await self._compactor.select_tool()
        logger.info("Compacting %s with %s", self._context.image_path, tool)
        return await self._compactor.start(self._context.image_path)

    def finish_compaction(self, result: CommandResult) -> None:
        self._compactor.finish(self._context.image_path, result)

    async def abandon_compaction(self) -> None:
        await self._compactor.abandon()

    def space_sufficient(self) -> bool:
        return False


class SimulatedProcess:
    """Stand-in for an external process: sleeps for ``duration`` seconds."""

    def __init__(self, duration: float) -> None:
        self._loop = asyncio.get_running_loop()
        self._duration = max(0.0, duration)
        self._started = self._loop.time()
        self._ended: float | None = None
        self._task = asyncio.create_task(asyncio.sleep(self._duration))
        self._task.add_done_callback(self._mark_ended)

    def _mark_ended(self, task: asyncio.Task[None]) -> None:
        self._ended = self._loop.time()

    @property
    def running(self) -> bool:
        return not self._task.done()

    @property
    def elapsed_fraction(self) -> float:
        if self._duration == 0:
            return 1.0
        now = self._ended if self._ended is not None else self._loop.time()
        return min(1.0, (now - self._started) / self._duration)

    async def wait(self) -> CommandResult:
        await asyncio.wait({self._task})
        exit_code = _TERMINATED if self._task.cancelled() else 0
        return CommandResult(exit_code=exit_code, stdout="", stderr="")

    async def terminate(self) -> None:
        self._task.cancel()
        await asyncio.wait({self._task})


class SimulatedOperations:
    """Leaf operations that only sleep and report fake progress."""

    def __init__(self, context: ExecutionContext, image_size_gb: float) -> None:
        self._context = context
        self._settings = context.config.simulation
        self._image_size_gb = image_size_gb
        self._fill: SimulatedProcess | None = None
        self._fill_target_bytes = 0
        self.total_written_gb = 0.0

    async def start_fill(self, size_gb: float) -> Process:
        logger.info("[simulate] Would write %.1f GB of zeros to %s", size_gb, self._context.config.filler_path)
        self._fill_target_bytes = gb_to_bytes(size_gb)
        self._fill = SimulatedProcess(size_gb / self._settings.fill_rate_gb_per_second)
        return self._fill

    async def filled_bytes(self) -> int:
        if self._fill is None:
            return 0
        return int(self._fill_target_bytes * self._fill.elapsed_fraction)

    async def remove_filler(self) -> None:
        if self._fill is not None:
            self.total_written_gb += await self.filled_bytes() / 1024**3
        logger.info("[simulate] Would remove %s", self._context.config.filler_path)
        self._fill = None
        self._fill_target_bytes = 0

    async def shutdown_subsystem(self) -> None:
        logger.info("[simulate] Would run wsl --shutdown")
        await asyncio.sleep(self._settings.shutdown_seconds)

    async def start_compaction(self) -> Process:
        logger.info("[simulate] Would compact %s", self._context.image_path)
        return SimulatedProcess(self._settings.compaction_seconds)

    def finish_compaction(self, result: CommandResult) -> None:
        logger.info("[simulate] Compaction finished")

    async def abandon_compaction(self) -> None:
        logger.info("[simulate] Compaction abandoned")

    def space_sufficient(self) -> bool:
        # Once as much filler as the whole image has been written, another
        # cycle has nothing left to consolidate.
        return self._image_size_gb > 0 and self.total_written_gb >= self._image_size_gb


def create_operations(context: ExecutionContext, image_size_gb: float) -> LeafOperations:
    """Pick real or simulated leaf operations for a run."""
    if context.simulate:
        return SimulatedOperations(context, image_size_gb)
    return RealOperations(context, WslExecutor(context.distro), ImageCompactor())
