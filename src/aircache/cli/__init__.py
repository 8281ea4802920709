"""
Aircache CLI.
"""

from pathlib import Path

import typer

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config.yaml (default: ./config.yaml)")
ENV_OPTION = typer.Option(None, help="Environment overlay (dev, staging, prod)")
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Verbose output")


def load_service(config_path: Path | None, env: str | None, verbose: bool):
    """Build the service from config, exiting with a message on bad settings."""
    from aircache.exceptions import ConfigurationError
    from aircache.service.server import AircacheService

    try:
        return AircacheService.from_config_file(config_path, env, verbose=verbose)
    except ConfigurationError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from None
