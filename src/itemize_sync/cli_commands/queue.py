"""Queue management CLI commands: sync, pending, retry, delete."""

import typer

from itemize_sync.app import Services
from itemize_sync.cli_commands.common import _output, item_summary, run_with_services


def sync_command(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Deliver pending uploads now."""

    async def _sync(services: Services):
        services.queue.recover_interrupted()
        if not services.monitor.is_online:
            return None
        await services.sync.start_sync()
        return services.sync.refresh()

    state = run_with_services(_sync)
    if state is None:
        _output({"status": "offline"}, output_json, "Offline - nothing was sent.")
        raise typer.Exit(1)

    _output(
        {
            "status": "done",
            "pending": state.pending_count,
            "failed": state.failed_count,
            "last_error": state.last_error,
        },
        output_json,
        f"Sync finished: {state.pending_count} pending, {state.failed_count} failed",
    )


def pending_command(
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """List queued uploads."""

    async def _list(services: Services):
        return services.queue.get_queue_items()

    items = run_with_services(_list, check_network=False)
    summaries = [item_summary(item) for item in items]

    if output_json:
        _output({"items": summaries}, True, "")
        return

    if not items:
        typer.echo("No pending uploads")
        return

    for item in items:
        line = f"{item.id}  {item.status.value:<8} attempts={item.attempts}  {item.payload.file_name}"
        if item.error:
            line += f"  ({item.error})"
        typer.echo(line)


def retry_command(
    item_id: str = typer.Argument(None, help="Queue item id; omit to retry all failed uploads"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Retry failed uploads."""

    async def _retry(services: Services):
        if item_id:
            return int(await services.sync.retry_item(item_id))
        return await services.sync.retry_all()

    count = run_with_services(_retry)
    _output({"reset": count}, output_json, f"Retrying {count} upload{'s' if count != 1 else ''}")


def delete_command(
    item_id: str = typer.Argument(..., help="Queue item id"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output in JSON format"),
) -> None:
    """Permanently delete a queued upload and its local file."""

    async def _delete(services: Services):
        return services.sync.delete_item(item_id)

    deleted = run_with_services(_delete, check_network=False)
    if not deleted:
        _output({"deleted": False}, output_json, f"No queued upload with id {item_id}")
        raise typer.Exit(1)
    _output({"deleted": True}, output_json, "Deleted")
