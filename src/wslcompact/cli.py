"""CLI entry point for wsl-compact using Typer."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import sys
from importlib.resources import files
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from wslcompact import __version__
from wslcompact.config import Configuration, ConfigurationError
from wslcompact.decisions import resolver_for
from wslcompact.disk import HostDiskStats
from wslcompact.images import (
    Distribution,
    distribution_for_image,
    find_default_image,
    host_drive_of,
    registered_distributions,
)
from wslcompact.logger import configure_logging, generate_log_filename, get_latest_log_file, get_logs_directory
from wslcompact.models import AbortReason, CompactionError, ExecutionContext, OperationMode, ValidationError
from wslcompact.orchestrator import RunSummary, WorkflowOrchestrator
from wslcompact.privilege import is_elevated, relaunch_elevated
from wslcompact.signals import install_signal_handlers
from wslcompact.sizing import ModeThresholds, auto_cycle_cap, compute_fill_size, select_mode
from wslcompact.ui import TerminalUI, render_summary

app = typer.Typer(
    name="wsl-compact",
    help="Reclaim host disk space held by WSL virtual disk images",
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)


def _version_callback(value: bool) -> None:
    """Print version and exit if --version flag is provided."""
    if value:
        console.print(f"wsl-compact {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version_flag: Annotated[
        bool,
        typer.Option("--version", "-v", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """Zero-fill, shut down and compact WSL images in safe cycles."""


def _load_config(path: Path | None) -> Configuration:
    try:
        return Configuration.load(path)
    except ConfigurationError as e:
        console.print("[bold red]Configuration error:[/bold red]")
        for error in e.errors:
            console.print(f"  {error.path}: {error.message}")
        sys.exit(1)


def _resolve_image(image: Path | None, distributions: list[Distribution]) -> Path:
    resolved = image or find_default_image(distributions=distributions)
    if resolved is None:
        console.print("[bold red]Error:[/bold red] No WSL image found. Pass one with --image.")
        sys.exit(1)
    return resolved


def _distro_for(image: Path, requested: str | None, distributions: list[Distribution]) -> str | None:
    """The distribution to zero-fill: the requested one, else the image's owner."""
    if requested:
        return requested
    owner = distribution_for_image(image, distributions)
    if owner is not None:
        logger.info("Zero-filling %s, the distribution stored in %s", owner.name, image)
        return owner.name
    return None


def _read_stats(stats: HostDiskStats, image: Path, drive: str) -> tuple[float, float]:
    """Return (free GB on the host drive, image size GB)."""
    try:
        return stats.free_gb(drive), stats.file_size_gb(image)
    except (OSError, RuntimeError) as e:
        console.print(f"[bold red]Error:[/bold red] Cannot read disk statistics: {e}")
        sys.exit(1)


def _print_statistics(image: Path, drive: str, free_gb: float, image_gb: float, min_free_gb: float) -> None:
    table = Table(show_header=False, box=None)
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Image", str(image))
    table.add_row("Image size", f"{image_gb:.1f} GB")
    table.add_row(f"Free on {drive}", f"{free_gb:.1f} GB")
    table.add_row("Minimum free", f"{min_free_gb:.1f} GB")
    console.print(table)


def _prompt_mode(recommended: OperationMode) -> OperationMode:
    answer = Prompt.ask(
        "Mode",
        choices=[OperationMode.INCREMENTAL.value, OperationMode.FULL.value],
        default=recommended.value,
        console=console,
    )
    return OperationMode(answer)


@app.command()
def run(  # noqa: PLR0913
    mode: Annotated[OperationMode, typer.Option("--mode", "-m", help="How cycles are planned")] = OperationMode.INTERACTIVE,
    min_free: Annotated[float, typer.Option("--min-free", help="Host free space (GB) never to go below")] = 20.0,
    image: Annotated[Path | None, typer.Option("--image", "-i", help="Path to ext4.vhdx (default: largest found)")] = None,
    distro: Annotated[str | None, typer.Option("--distro", "-d", help="WSL distribution to fill (default: default one)")] = None,
    force: Annotated[bool, typer.Option("--force", "-f", help="Never prompt; decide alerts automatically")] = False,
    simulate: Annotated[bool, typer.Option("--simulate", help="Walk through the cycles without touching anything")] = False,
    cycle_cap: Annotated[float, typer.Option("--cycle-cap", help="GB filled per cycle; 0 picks one from free space")] = 0.0,
    max_cycles: Annotated[int, typer.Option("--max-cycles", help="Upper bound on cycles")] = 10,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config file (default: ~/.config/wsl-compact/config.yaml)"),
    ] = None,
) -> None:
    """Compact a WSL image."""
    cfg = _load_config(config)
    distributions = registered_distributions()
    image_path = _resolve_image(image, distributions)
    drive = host_drive_of(image_path)

    if mode == OperationMode.INTERACTIVE and force:
        console.print("[bold red]Error:[/bold red] --force needs a non-interactive --mode")
        sys.exit(1)

    if not simulate and not is_elevated():
        if force:
            console.print("[bold red]Error:[/bold red] Compaction needs Administrator rights; rerun elevated.")
            sys.exit(1)
        console.print("[yellow]Administrator rights required, requesting elevation...[/yellow]")
        sys.exit(relaunch_elevated(sys.argv[1:]))

    configure_logging(cfg.log_file_level, cfg.log_cli_level, get_logs_directory() / generate_log_filename())

    stats = HostDiskStats()
    free_gb, image_gb = _read_stats(stats, image_path, drive)

    if mode == OperationMode.INTERACTIVE:
        _print_statistics(image_path, drive, free_gb, image_gb, min_free)
        recommended = select_mode(free_gb, min_free, image_gb, ModeThresholds.from_config(cfg.thresholds))
        mode = _prompt_mode(recommended)
        if not Confirm.ask(f"Start {mode.value} compaction of {image_path.name}?", default=True, console=console):
            console.print("Nothing changed.")
            sys.exit(0)

    if cycle_cap <= 0:
        cycle_cap = auto_cycle_cap(
            free_gb,
            min_free,
            cfg.thresholds.auto_cap_divisor,
            cfg.thresholds.auto_cap_ceiling_gb,
        )
        logger.info("Using a cycle cap of %.0f GB", cycle_cap)

    context = ExecutionContext(
        image_path=image_path,
        host_drive=drive,
        min_free_gb=min_free,
        cycle_cap_gb=cycle_cap,
        max_cycles=max_cycles,
        force=force,
        simulate=simulate,
        mode=mode,
        config=cfg,
        distro=_distro_for(image_path, distro or cfg.distro, distributions),
    )
    orchestrator = WorkflowOrchestrator(
        context,
        stats=stats,
        list_distributions=lambda: distributions,
        resolver=resolver_for(force, console),
    )
    sys.exit(asyncio.run(_async_run(orchestrator, max_cycles)))


ABORT_GUIDANCE = {
    AbortReason.PROTECTED_APP: "Close Docker Desktop (or the other protected application) and rerun wsl-compact.",
    AbortReason.CRITICAL_DISK: (
        "Free up space on the host drive, or rerun with a smaller --cycle-cap or a higher --min-free."
    ),
}


def _abort_guidance(summary: RunSummary) -> str | None:
    """What to do next after a safety abort, keyed on the reason of the aborted cycle."""
    if not summary.safety_aborted:
        return None
    reason = next(c.abort_reason for c in reversed(summary.cycles) if c.aborted)
    return ABORT_GUIDANCE.get(reason)


async def _async_run(orchestrator: WorkflowOrchestrator, max_cycles: int) -> int:
    """Run the orchestrator with the phase-aware interrupt handler installed.

    Returns:
        Exit code: 0 success or user stop, 1 failure or safety abort
    """
    loop = asyncio.get_running_loop()
    handler = install_signal_handlers(orchestrator.phase_tracker, orchestrator.token, console)
    ui = TerminalUI(console, max_cycles=max_cycles)
    ui_task = asyncio.create_task(ui.consume_events(orchestrator.event_bus.subscribe()))
    ui.start()

    summary: RunSummary | None = None
    try:
        main_task = asyncio.create_task(orchestrator.run())
        handler.attach(loop, main_task)
        try:
            summary = await main_task
        except asyncio.CancelledError:
            console.print("[yellow]Stopped by user. The partial filler file is removed on the next run.[/yellow]")
            return 0
        except ValidationError as e:
            console.print("[bold red]Cannot start:[/bold red]")
            for issue in e.issues:
                console.print(f"  {issue.field}: {issue.message}")
            return 1
        except CompactionError as e:
            console.print(f"\n[bold red]Compaction failed:[/bold red] {e}")
            console.print("[dim]Run 'wsl-compact logs --last' for details. The image was not retried.[/dim]")
            return 1
        except Exception as e:
            console.print(f"\n[bold red]Run failed:[/bold red] {e}")
            return 1
    finally:
        handler.cleanup()
        orchestrator.event_bus.close()
        await ui_task
        ui.stop()
        if summary is not None:
            console.print(render_summary(summary))
            guidance = _abort_guidance(summary)
            if guidance is not None:
                console.print(f"[yellow]{guidance}[/yellow]")

    return summary.exit_code


@app.command()
def recommend(
    min_free: Annotated[float, typer.Option("--min-free", help="Host free space (GB) never to go below")] = 20.0,
    image: Annotated[Path | None, typer.Option("--image", "-i", help="Path to ext4.vhdx (default: largest found)")] = None,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to config file (default: ~/.config/wsl-compact/config.yaml)"),
    ] = None,
) -> None:
    """Show disk statistics and the recommended mode without changing anything."""
    cfg = _load_config(config)
    image_path = _resolve_image(image, registered_distributions())
    drive = host_drive_of(image_path)
    free_gb, image_gb = _read_stats(HostDiskStats(), image_path, drive)

    _print_statistics(image_path, drive, free_gb, image_gb, min_free)
    recommended = select_mode(free_gb, min_free, image_gb, ModeThresholds.from_config(cfg.thresholds))
    console.print(f"\nRecommended mode: [bold cyan]{recommended.value}[/bold cyan]")

    if recommended == OperationMode.FULL:
        fill = compute_fill_size(free_gb, min_free, math.inf)
        console.print(f"One pass filling {fill:.1f} GB")
    else:
        cap = auto_cycle_cap(free_gb, min_free, cfg.thresholds.auto_cap_divisor, cfg.thresholds.auto_cap_ceiling_gb)
        fill = compute_fill_size(free_gb, min_free, cap)
        if fill < 1:
            console.print("[yellow]Not enough headroom above the minimum free space to fill anything[/yellow]")
        else:
            console.print(f"Cycles of up to {cap:.0f} GB, first one filling {fill:.0f} GB")


def _display_log_file(log_file: Path) -> None:
    """Display log file content with Rich formatting."""
    level_colors = {
        "debug": "dim",
        "full": "cyan",
        "info": "green",
        "warning": "yellow",
        "error": "red",
        "critical": "bold red",
    }
    standard = {"timestamp", "level", "logger", "event", "hostname"}

    console.print(f"\n[bold]Log file:[/bold] {log_file}\n")

    try:
        with log_file.open("r", encoding="utf-8") as f:
            for line_num, raw_line in enumerate(f, start=1):
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    console.print(f"[dim]Line {line_num}:[/dim] {line}")
                    continue

                timestamp = entry.get("timestamp", "")
                level = str(entry.get("level", "info")).lower()
                time_part = timestamp.split("T")[1].split(".")[0] if "T" in timestamp else timestamp

                text = Text()
                text.append(f"{time_part} ", style="dim")
                text.append(f"[{level.upper():8}]", style=level_colors.get(level, "white"))
                text.append(f" [{entry.get('logger', '')}]", style="blue")
                text.append(f" {entry.get('event', '')}")

                context_fields = {k: v for k, v in entry.items() if k not in standard}
                if context_fields:
                    text.append(" " + " ".join(f"{k}={v}" for k, v in context_fields.items()), style="dim")
                console.print(text)

    except OSError as e:
        console.print(f"[bold red]Error reading log file:[/bold red] {e}")
        sys.exit(1)


@app.command()
def logs(
    last: Annotated[
        bool,
        typer.Option("--last", "-l", help="Display the most recent log file"),
    ] = False,
) -> None:
    """View log files.

    By default, shows the logs directory. Use --last to display the most recent log file.
    """
    if last:
        log_file = get_latest_log_file()
        if log_file is None:
            console.print("[yellow]No log files found[/yellow]")
            console.print(f"Logs directory: {get_logs_directory()}")
            sys.exit(1)
        _display_log_file(log_file)
        return

    logs_dir = get_logs_directory()
    console.print(f"Logs directory: {logs_dir}")
    if not logs_dir.exists():
        console.print("\n[yellow]Logs directory does not exist yet[/yellow]")
        return

    log_files = sorted(logs_dir.glob("compact-*.log"), reverse=True)
    if not log_files:
        console.print("\n[yellow]No log files found[/yellow]")
        return
    console.print(f"\nFound {len(log_files)} log file(s):")
    for log_file in log_files[:10]:
        console.print(f"  {log_file.name}")
    if len(log_files) > 10:
        console.print(f"  ... and {len(log_files) - 10} more")


@app.command()
def init(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing configuration file"),
    ] = False,
) -> None:
    """Initialize default configuration file.

    Creates ~/.config/wsl-compact/config.yaml with default settings.
    Use --force to overwrite an existing configuration.
    """
    config_path = Configuration.get_default_config_path()

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration file already exists:[/yellow] {config_path}")
        console.print("Use --force to overwrite")
        raise typer.Exit(1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    default_config = files("wslcompact").joinpath("default-config.yaml").read_text(encoding="utf-8")
    config_path.write_text(default_config, encoding="utf-8")

    console.print(f"[green]Created configuration file:[/green] {config_path}")
    console.print("\n[dim]Review protected_apps and the thresholds before the first run.[/dim]")


if __name__ == "__main__":
    app()
