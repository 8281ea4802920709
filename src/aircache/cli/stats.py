"""
aircache stats - Show cache statistics.
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from aircache.cli import CONFIG_OPTION, ENV_OPTION, VERBOSE_OPTION, load_service

app = typer.Typer(name="stats", help="Show cache statistics", invoke_without_command=True)

console = Console()


async def _stats(service) -> dict[str, Any]:
    async with service:
        slot = await service.versions.get_active()
        return await service.store.stats(slot)


@app.callback()
def stats(
    ctx: typer.Context,
    config: Path | None = CONFIG_OPTION,
    env: str | None = ENV_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Show record and attachment counts of the active slot.
    """
    if ctx.invoked_subcommand is None:
        service = load_service(config, env, verbose)
        data = asyncio.run(_stats(service))
        if as_json:
            typer.echo(json.dumps(data, indent=2))
            return

        table = Table(title=f"Active slot {data['slot']}", show_header=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        for name, count in data["tables"].items():
            table.add_row(f"records in {name}", str(count))
        for key in ("records", "attachments", "attachments_downloaded"):
            table.add_row(key, str(data[key]))
        console.print(table)
