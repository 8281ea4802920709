"""
Main CLI entry point.
"""

import typer

from aircache import __version__
from aircache.cli import attachments, mappings, refresh, serve, stats


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"aircache version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="aircache",
    help="Aircache - a blue/green read cache for Airtable bases",
    add_completion=True,
)

# Register subcommands
app.add_typer(serve.app, name="serve")
app.add_typer(refresh.app, name="refresh")
app.add_typer(attachments.app, name="attachments")
app.add_typer(mappings.app, name="mappings")
app.add_typer(stats.app, name="stats")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    Aircache - a blue/green read cache for Airtable bases.

    Run 'aircache <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
