"""Process privilege checks and elevated relaunch."""

from __future__ import annotations

import ctypes
import logging
import os
import subprocess
import sys
from collections.abc import Sequence

__all__ = ["is_elevated", "relaunch_elevated"]

logger = logging.getLogger(__name__)


def is_elevated() -> bool:
    """True when running as Administrator (Windows) or root (elsewhere)."""
    if sys.platform == "win32":
        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except OSError:
            return False
    return os.geteuid() == 0


def _ps_escape(value: str) -> str:
    return value.replace("'", "''")


def relaunch_elevated(args: Sequence[str]) -> int:
    """Start this program again with elevated rights.

    On Windows the UAC prompt is shown through PowerShell ``Start-Process -Verb
    RunAs -Wait`` so the child's exit code can be returned. Elsewhere ``sudo`` is
    used.

    Returns:
        Exit code of the elevated process (1 if it could not be started)
    """
    argv = [sys.executable, "-m", "wslcompact", *args]
    logger.info("Relaunching with elevated privileges")

    if sys.platform == "win32":
        arg_list = ",".join("'" + _ps_escape(a) + "'" for a in argv[1:])
        script = (
            f"$p = Start-Process -FilePath '{_ps_escape(sys.executable)}' -ArgumentList {arg_list} "
            "-Verb RunAs -Wait -PassThru; exit $p.ExitCode"
        )
        try:
            completed = subprocess.run(
                ["powershell.exe", "-NoProfile", "-NonInteractive", "-Command", script],
                check=False,
            )
        except OSError as e:
            logger.error("Could not request elevation: %s", e)
            return 1
        return completed.returncode

    try:
        completed = subprocess.run(["sudo", *argv], check=False)
    except OSError as e:
        logger.error("Could not request elevation: %s", e)
        return 1
    return completed.returncode
