"""Decision callbacks for critical alerts.

The cycle engine never talks to the console. It asks an injected resolver
what to do, and the resolver is either deterministic (--force) or prompts the
user.
"""

from __future__ import annotations

from typing import TypeAlias

import logging
from collections.abc import Callable

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

from wslcompact.models import AlertAction, CriticalDiskAlert

__all__ = [
    "AlertResolver",
    "InteractiveResolver",
    "automatic_resolver",
    "resolver_for",
]

logger = logging.getLogger(__name__)

AlertResolver: TypeAlias = Callable[[CriticalDiskAlert], AlertAction]

_CHOICES = {
    "s": AlertAction.SKIP_TO_COMPACTION,
    "c": AlertAction.CONTINUE,
    "a": AlertAction.ABORT,
}


def automatic_resolver(alert: CriticalDiskAlert) -> AlertAction:
    """Non-interactive policy: stop filling and compact what was written.

    Reclaiming some space is still possible, so skipping beats failing.
    """
    logger.warning(
        "Host disk critically low (%.1f GB free), skipping to compaction",
        alert.free_gb,
    )
    return AlertAction.SKIP_TO_COMPACTION


class InteractiveResolver:
    """Asks the user how to handle a critical disk alert. Empty input skips."""

    def __init__(self, console: Console | None = None, ask: Callable[..., str] = Prompt.ask) -> None:
        self._console = console or Console()
        self._ask = ask

    def __call__(self, alert: CriticalDiskAlert) -> AlertAction:
        self._console.print(
            Panel(
                f"Host free space dropped to [bold]{alert.free_gb:.1f} GB[/bold] while zero-filling.\n\n"
                "  [bold]s[/bold]  stop filling and compact now (recommended)\n"
                "  [bold]c[/bold]  continue filling at the risk of running out of space\n"
                "  [bold]a[/bold]  abort: remove the filler and stop without compacting",
                title="[bold red]Critical disk space[/bold red]",
                border_style="red",
            )
        )
        answer = self._ask(
            "Choose",
            choices=list(_CHOICES),
            default="s",
            console=self._console,
        )
        action = _CHOICES.get((answer or "s").strip().lower(), AlertAction.SKIP_TO_COMPACTION)
        logger.info("User chose %s for critical disk alert", action.value)
        return action


def resolver_for(force: bool, console: Console | None = None) -> AlertResolver:
    """Deterministic resolver in force mode, prompting one otherwise."""
    if force:
        return automatic_resolver
    return InteractiveResolver(console)
