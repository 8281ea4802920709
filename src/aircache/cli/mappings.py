"""
aircache mappings - Sync and show table mappings.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from aircache.cli import CONFIG_OPTION, ENV_OPTION, VERBOSE_OPTION, load_service
from aircache.core.types import TableMapping
from aircache.source.mapping import sync_table_mappings

app = typer.Typer(name="mappings", help="Sync table mappings from the source", invoke_without_command=True)

console = Console()


async def _sync(service, sync: bool) -> list[TableMapping]:
    async with service:
        if sync:
            return await sync_table_mappings(service.source, service.store)
        return await service.store.list_tables()


@app.callback()
def mappings(
    ctx: typer.Context,
    config: Path | None = CONFIG_OPTION,
    env: str | None = ENV_OPTION,
    no_sync: bool = typer.Option(False, "--no-sync", help="Only show stored mappings"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Fetch the base schema and store external table id -> table name mappings.
    """
    if ctx.invoked_subcommand is None:
        service = load_service(config, env, verbose)
        result = asyncio.run(_sync(service, not no_sync))

        table = Table(title=f"Table mappings ({len(result)})", show_header=True)
        table.add_column("Table", style="cyan")
        table.add_column("Display name")
        table.add_column("External id", style="dim")
        table.add_column("Fields", style="green")
        for mapping in result:
            table.add_row(mapping.normalized_name, mapping.display_name, mapping.external_id, str(len(mapping.fields)))
        console.print(table)
