"""Itemize CLI - command-line interface for the offline sync agent."""

import typer

from itemize_sync import __version__
from itemize_sync.cli_commands import (
    capture_command,
    delete_command,
    pending_command,
    retry_command,
    status_command,
    sync_command,
    watch_command,
)
from itemize_sync.config import get_settings
from itemize_sync.logging import setup_logging

app = typer.Typer(
    name="itemize",
    help="Itemize Sync Agent - capture receipts offline, upload when connected.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"itemize-sync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Itemize Sync Agent - offline receipt capture."""
    settings = get_settings()
    setup_logging(settings.log_level, log_file=settings.log_file)


app.command(name="capture")(capture_command)
app.command(name="watch")(watch_command)
app.command(name="status")(status_command)
app.command(name="sync")(sync_command)
app.command(name="pending")(pending_command)
app.command(name="retry")(retry_command)
app.command(name="delete")(delete_command)


if __name__ == "__main__":
    app()
