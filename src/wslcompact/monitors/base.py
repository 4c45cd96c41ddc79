"""Base class for background monitors."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar

from wslcompact.models import Alert

__all__ = ["Monitor"]

logger = logging.getLogger(__name__)


class Monitor(ABC):
    """Periodic watcher that runs next to a long external operation.

    Monitors only emit alerts. They never change the phase and never raise
    into the primary flow: a failing check is logged and retried on the next
    tick.
    """

    name: ClassVar[str]

    def __init__(self, interval: float) -> None:
        """Initialize monitor.

        Args:
            interval: Seconds between two checks
        """
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.interval = interval

    @abstractmethod
    async def check(self) -> list[Alert]:
        """Take one sample and return the alerts it produces (possibly none)."""
        ...

    async def run(self, emit: Callable[[Alert], None]) -> None:
        """Check every ``interval`` seconds until cancelled.

        Args:
            emit: Callback receiving each alert, in emission order
        """
        logger.debug("Starting %s monitor", self.name, extra={"interval": self.interval})
        try:
            while True:
                try:
                    alerts = await self.check()
                except Exception as e:
                    logger.warning("%s monitor check failed: %s", self.name, e)
                    alerts = []

                for alert in alerts:
                    emit(alert)

                await asyncio.sleep(self.interval)

        except asyncio.CancelledError:
            logger.debug("%s monitor cancelled", self.name)
            raise
