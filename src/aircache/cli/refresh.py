"""
aircache refresh - Run one full refresh and exit.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from aircache.cli import CONFIG_OPTION, ENV_OPTION, VERBOSE_OPTION, load_service
from aircache.core.types import RefreshStats

app = typer.Typer(name="refresh", help="Run a full refresh now", invoke_without_command=True)

console = Console()


async def _refresh(service) -> RefreshStats:
    async with service:
        return await service.refresh.run()


def _print_stats(stats: RefreshStats) -> None:
    table = Table(title="Full refresh", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in stats.to_dict().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@app.callback()
def refresh(
    ctx: typer.Context,
    config: Path | None = CONFIG_OPTION,
    env: str | None = ENV_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Rebuild the inactive slot from the source and flip to it.

    Exits with code 1 when another refresh holds the lock.
    """
    if ctx.invoked_subcommand is None:
        service = load_service(config, env, verbose)
        stats = asyncio.run(_refresh(service))
        if stats.skipped:
            console.print("[yellow]Another refresh is in progress, skipped.[/yellow]")
            raise typer.Exit(code=1)
        _print_stats(stats)
        if stats.errors:
            console.print(f"[yellow]Completed with {stats.errors} errors[/yellow]")
