"""
aircache serve - Long-running service.

Runs the cache as an HTTP service with:
- GET /api/v1/tables/... - Cached records from the active slot
- POST /api/v1/refresh - Queue a full refresh
- POST /webhooks/notifications - Signed change notifications
- GET /health - Health check
- Background scheduler for periodic full refreshes
"""

from pathlib import Path

import typer

from aircache.cli import CONFIG_OPTION, ENV_OPTION, VERBOSE_OPTION
from aircache.service.server import run_service

app = typer.Typer(name="serve", help="Run Aircache as a long-running service", invoke_without_command=True)


@app.callback()
def serve(
    ctx: typer.Context,
    config: Path | None = CONFIG_OPTION,
    env: str | None = ENV_OPTION,
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Disable the periodic full refresh"),
    no_initial_refresh: bool = typer.Option(
        False, "--no-initial-refresh", help="Do not queue a full refresh on startup"
    ),
    host: str | None = typer.Option(None, help="Host to bind to (default from config)"),
    port: int | None = typer.Option(None, help="Port to bind to (default from config)"),
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """
    Run Aircache as a long-running service.
    """
    if ctx.invoked_subcommand is None:
        try:
            run_service(
                config_path=config,
                env=env,
                host=host,
                port=port,
                verbose=verbose,
                enable_scheduler=not no_scheduler,
                run_on_startup=not no_initial_refresh,
            )
        except RuntimeError as e:
            typer.secho(str(e), fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from None
