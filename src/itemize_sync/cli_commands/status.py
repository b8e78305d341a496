"""Status command for the itemize CLI."""

from datetime import datetime, timezone

import typer

from itemize_sync.app import Services
from itemize_sync.cli_commands.common import _output, run_with_services


def _format_time_ago(timestamp: datetime | None) -> str:
    """Format a timestamp as 'X minutes ago' style string."""
    if timestamp is None:
        return "Never"

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    seconds = int((datetime.now(timezone.utc) - timestamp).total_seconds())
    if seconds < 60:
        return f"{seconds} seconds ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def status_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show connectivity, queue counts, and last successful sync."""

    async def _status(services: Services):
        counts = services.queue.get_queue_counts()
        return {
            "online": services.monitor.is_online,
            "pending": counts["pending"],
            "syncing": counts["syncing"],
            "failed": counts["failed"],
            "total": counts["total"],
            "last_sync_at": services.queue.get_last_sync_at(),
            "offline_bytes": services.files.get_offline_storage_size(),
        }

    data = run_with_services(_status)

    if output_json:
        _output(data, True, "")
        return

    typer.echo("")
    typer.echo("Itemize Sync Status")
    typer.echo("-------------------")
    typer.echo(f"Network: {'Online' if data['online'] else 'Offline'}")
    typer.echo(f"Queue: {data['pending']} pending uploads")
    if data["failed"] > 0:
        typer.echo(f"Failed: {data['failed']} uploads (run 'itemize retry' to try again)")
    typer.echo(f"Last sync: {_format_time_ago(data['last_sync_at'])}")
    typer.echo("")
