"""Fill-size calculation, mode selection and cycle planning.

Everything here is pure: no I/O, so the same functions back both the
``recommend`` command and the mode actually used for a run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from wslcompact.config import ThresholdConfig
from wslcompact.models import OperationMode

__all__ = [
    "UNBOUNDED",
    "CyclePlan",
    "ModeThresholds",
    "auto_cycle_cap",
    "compute_fill_size",
    "plan_cycles",
    "resolve_mode",
    "select_mode",
]

UNBOUNDED = math.inf

# Empirical constants. Kept as-is and overridable through ThresholdConfig.
FULL_RATIO = 2.0
FULL_MIN_FREE_GB = 50.0
LARGE_IMAGE_GB = 100.0
TIGHT_FREE_GB = 50.0


@dataclass(frozen=True)
class ModeThresholds:
    """Decision table constants for the Auto mode selector."""

    full_ratio: float = FULL_RATIO
    full_min_free_gb: float = FULL_MIN_FREE_GB
    large_image_gb: float = LARGE_IMAGE_GB
    tight_free_gb: float = TIGHT_FREE_GB

    @classmethod
    def from_config(cls, config: ThresholdConfig) -> ModeThresholds:
        return cls(
            full_ratio=config.full_ratio,
            full_min_free_gb=config.full_min_free_gb,
            large_image_gb=config.large_image_gb,
            tight_free_gb=config.tight_free_gb,
        )


@dataclass(frozen=True)
class CyclePlan:
    """Per-cycle fill cap and number of cycles.

    Full mode is this plan with an unbounded cap and a single cycle.
    """

    cycle_cap_gb: float
    max_cycles: int

    @property
    def is_full(self) -> bool:
        return math.isinf(self.cycle_cap_gb) and self.max_cycles == 1

    def fill_size(self, free_gb: float, safety_margin_gb: float) -> float:
        return compute_fill_size(free_gb, safety_margin_gb, self.cycle_cap_gb)


def compute_fill_size(free_gb: float, safety_margin_gb: float, cycle_cap_gb: float = UNBOUNDED) -> float:
    """Return how many GB to fill this cycle.

    With a finite cap: ``min(cap, floor(free - margin))``, or 0 when that is
    below 1 GB (no headroom, the cycle loop stops). With an unbounded cap the
    cycle is maximal: ``max(1, free - margin)``.

    Never negative.
    """
    headroom = free_gb - safety_margin_gb
    if math.isinf(cycle_cap_gb):
        return max(1.0, headroom)

    fill = min(cycle_cap_gb, math.floor(headroom))
    if fill < 1:
        return 0.0
    return float(fill)


def plan_cycles(mode: OperationMode, cycle_cap_gb: float, max_cycles: int) -> CyclePlan:
    """Map a resolved mode onto the single incremental algorithm.

    Raises:
        ValueError: For modes that must be resolved first (interactive, auto)
    """
    if mode == OperationMode.FULL:
        return CyclePlan(cycle_cap_gb=UNBOUNDED, max_cycles=1)
    if mode == OperationMode.INCREMENTAL:
        return CyclePlan(cycle_cap_gb=cycle_cap_gb, max_cycles=max_cycles)
    raise ValueError(f"Mode {mode.value} must be resolved before planning cycles")


def select_mode(
    free_gb: float,
    min_free_gb: float,
    image_size_gb: float,
    thresholds: ModeThresholds | None = None,
) -> OperationMode:
    """Choose Full or Incremental for Auto mode. First matching rule wins."""
    t = thresholds or ModeThresholds()
    ratio = free_gb / min_free_gb if min_free_gb > 0 else math.inf

    if ratio > t.full_ratio and free_gb > t.full_min_free_gb:
        return OperationMode.FULL  # Ample headroom: one fast pass
    if image_size_gb > t.large_image_gb and free_gb < t.tight_free_gb:
        return OperationMode.INCREMENTAL  # Large image, little room: small steps
    return OperationMode.INCREMENTAL


def resolve_mode(
    requested: OperationMode,
    free_gb: float,
    min_free_gb: float,
    image_size_gb: float,
    thresholds: ModeThresholds | None = None,
) -> OperationMode:
    """Resolve AUTO through the selector; FULL and INCREMENTAL pass through.

    Raises:
        ValueError: For INTERACTIVE, which only the CLI can resolve
    """
    if requested == OperationMode.AUTO:
        return select_mode(free_gb, min_free_gb, image_size_gb, thresholds)
    if requested == OperationMode.INTERACTIVE:
        raise ValueError("Interactive mode must be resolved by prompting the user")
    return requested


def auto_cycle_cap(
    free_gb: float,
    min_free_gb: float,
    divisor: float = 4.0,
    ceiling_gb: float = 50.0,
) -> float:
    """Per-cycle cap used when the user asked for ``--cycle-cap 0``."""
    headroom = max(0.0, free_gb - min_free_gb)
    return float(min(ceiling_gb, max(1, math.floor(headroom / divisor))))
