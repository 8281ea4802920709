"""
aircache attachments - Download pending attachments of the active slot.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console

from aircache.cli import CONFIG_OPTION, ENV_OPTION, VERBOSE_OPTION, load_service
from aircache.core.types import DownloadStats

app = typer.Typer(name="attachments", help="Download pending attachments", invoke_without_command=True)

console = Console()


async def _download(service, concurrency: int | None) -> DownloadStats:
    async with service:
        return await service.attachments.download_pending(concurrency=concurrency)


@app.callback()
def attachments(
    ctx: typer.Context,
    config: Path | None = CONFIG_OPTION,
    env: str | None = ENV_OPTION,
    concurrency: int | None = typer.Option(None, min=1, help="Downloads per wave (default from config)"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Download every attachment of the active slot that is not yet on disk.
    """
    if ctx.invoked_subcommand is None:
        service = load_service(config, env, verbose)
        stats = asyncio.run(_download(service, concurrency))
        console.print(
            f"[green]{stats.downloaded} downloaded[/green], {stats.skipped} already present, "
            f"[{'red' if stats.errors else 'green'}]{stats.errors} errors[/]"
        )
        for detail in stats.error_details:
            console.print(f"  [red]{detail['attachment_id']}[/red]: {detail['error']}")
        if stats.errors:
            raise typer.Exit(code=1)
