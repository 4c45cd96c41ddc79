"""Locating WSL virtual disk images and the distributions that own them."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "Distribution",
    "candidate_images",
    "distribution_for_image",
    "find_default_image",
    "host_drive_of",
    "registered_distributions",
]

logger = logging.getLogger(__name__)

# Relative to %LOCALAPPDATA%
_IMAGE_GLOBS = (
    "Packages/*/LocalState/ext4.vhdx",  # Store-installed distributions
    "wsl/*/ext4.vhdx",  # wsl --install on recent WSL releases
    "Docker/wsl/*/*.vhdx",  # Docker Desktop data disks
)

_LXSS_KEY = r"Software\Microsoft\Windows\CurrentVersion\Lxss"


@dataclass(frozen=True)
class Distribution:
    """A WSL distribution registered for the current user."""

    name: str
    base_path: Path  # Directory holding ext4.vhdx
    is_default: bool = False


def registered_distributions() -> list[Distribution]:
    """Read the distributions registered under HKCU\\...\\Lxss.

    Returns an empty list on hosts without the WSL registry key.
    """
    if sys.platform != "win32":
        return []
    import winreg

    try:
        root = winreg.OpenKey(winreg.HKEY_CURRENT_USER, _LXSS_KEY)
    except OSError:
        return []

    distributions: list[Distribution] = []
    with root:
        try:
            default_guid = winreg.QueryValueEx(root, "DefaultDistribution")[0]
        except OSError:
            default_guid = None
        for index in range(winreg.QueryInfoKey(root)[0]):
            guid = winreg.EnumKey(root, index)
            with winreg.OpenKey(root, guid) as key:
                try:
                    name = winreg.QueryValueEx(key, "DistributionName")[0]
                    base_path = winreg.QueryValueEx(key, "BasePath")[0]
                except OSError:
                    continue
            distributions.append(
                Distribution(
                    name=name,
                    base_path=Path(base_path.removeprefix("\\\\?\\")),
                    is_default=default_guid is not None and guid.casefold() == default_guid.casefold(),
                )
            )
    for distribution in distributions:
        logger.debug("Registered distribution %s at %s", distribution.name, distribution.base_path)
    return distributions


def _same_dir(a: Path, b: Path) -> bool:
    return os.path.normpath(str(a)).casefold() == os.path.normpath(str(b)).casefold()


def distribution_for_image(image_path: Path, distributions: Sequence[Distribution]) -> Distribution | None:
    """The distribution whose base directory holds ``image_path``, if any."""
    for distribution in distributions:
        if _same_dir(image_path.parent, distribution.base_path):
            return distribution
    return None


def candidate_images(local_app_data: Path | None = None) -> list[Path]:
    """Return every known WSL image, largest first."""
    if local_app_data is None:
        env = os.environ.get("LOCALAPPDATA")
        if not env:
            return []
        local_app_data = Path(env)

    found: set[Path] = set()
    for pattern in _IMAGE_GLOBS:
        found.update(p for p in local_app_data.glob(pattern) if p.is_file())

    images = sorted(found, key=lambda p: p.stat().st_size, reverse=True)
    for image in images:
        logger.debug("Found image candidate %s", image)
    return images


def find_default_image(
    local_app_data: Path | None = None,
    distributions: Sequence[Distribution] = (),
) -> Path | None:
    """Pick the largest image, the one with the most to reclaim.

    When distributions are known only their images qualify: an image no
    distribution owns (such as a Docker data disk) cannot be zero-filled.
    """
    images = candidate_images(local_app_data)
    if distributions:
        images = [image for image in images if distribution_for_image(image, distributions) is not None]
    return images[0] if images else None


def host_drive_of(image_path: Path) -> str:
    """Drive identifier holding the image ("C:"), or its anchor on other hosts."""
    drive = image_path.drive
    if drive:
        return drive
    return image_path.anchor or "/"
