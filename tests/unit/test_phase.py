"""Unit tests for the phase tracker."""

from __future__ import annotations

import asyncio

import pytest

from wslcompact.models import OperationPhase
from wslcompact.phase import PhaseTracker, PhaseTransitionError


class TestPhaseTracker:
    """One phase at a time, always returning to SAFE."""

    def test_starts_safe(self) -> None:
        assert PhaseTracker().current == OperationPhase.SAFE

    def test_enter_sets_and_resets(self) -> None:
        """The phase is set inside the block and SAFE afterwards."""
        tracker = PhaseTracker()
        with tracker.enter(OperationPhase.ZERO_FILL):
            assert tracker.current == OperationPhase.ZERO_FILL
        assert tracker.current == OperationPhase.SAFE

    def test_reset_on_exception(self) -> None:
        """An exception inside the block still returns to SAFE."""
        tracker = PhaseTracker()
        with pytest.raises(RuntimeError), tracker.enter(OperationPhase.COMPACTION):
            raise RuntimeError("tool crashed")
        assert tracker.current == OperationPhase.SAFE

    @pytest.mark.asyncio
    async def test_reset_on_cancellation(self) -> None:
        """Cancelling a task inside the block returns to SAFE."""
        tracker = PhaseTracker()
        entered = asyncio.Event()

        async def hold() -> None:
            with tracker.enter(OperationPhase.ZERO_FILL):
                entered.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(hold())
        await entered.wait()
        assert tracker.current == OperationPhase.ZERO_FILL
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert tracker.current == OperationPhase.SAFE

    def test_nested_risky_phase_rejected(self) -> None:
        """Entering a phase while another is active is refused and leaves it untouched."""
        tracker = PhaseTracker()
        with tracker.enter(OperationPhase.ZERO_FILL):
            with pytest.raises(PhaseTransitionError):
                with tracker.enter(OperationPhase.COMPACTION):
                    pass
            assert tracker.current == OperationPhase.ZERO_FILL

    def test_safe_cannot_be_entered(self) -> None:
        with pytest.raises(PhaseTransitionError):
            with PhaseTracker().enter(OperationPhase.SAFE):
                pass

    def test_listener_sees_every_transition(self) -> None:
        """The listener receives SAFE -> X -> SAFE for each step."""
        seen: list[OperationPhase] = []
        tracker = PhaseTracker(listener=seen.append)
        with tracker.enter(OperationPhase.ZERO_FILL):
            pass
        with tracker.enter(OperationPhase.CLEANUP):
            pass
        assert seen == [
            OperationPhase.ZERO_FILL,
            OperationPhase.SAFE,
            OperationPhase.CLEANUP,
            OperationPhase.SAFE,
        ]
