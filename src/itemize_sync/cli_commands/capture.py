"""Capture CLI commands."""

import asyncio
from pathlib import Path

import typer

from itemize_sync.app import Services, build_services
from itemize_sync.cli_commands.common import _output, run_with_services
from itemize_sync.config import get_settings


def capture_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Receipt image to upload"),
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Upload a receipt image, or queue it for later if that is not possible."""

    async def _capture(services: Services):
        return await services.capture.upload_or_queue(path)

    result = run_with_services(_capture)

    data = {
        "success": result.success,
        "queued": result.queued,
        "local_id": result.local_id,
        "error": result.error,
        "receipt": result.receipt_data,
    }

    if result.success and not result.queued:
        receipt = (result.receipt_data or {}).get("receipt") or {}
        items = (result.receipt_data or {}).get("items") or []
        message = f"Receipt extracted: id={receipt.get('id', '?')}, {len(items)} line items"
    elif result.queued:
        message = f"Saved for upload when online (local id: {result.local_id})"
        if result.error:
            message = f"{result.error}\n{message}"
    else:
        message = f"Capture failed: {result.error}"

    _output(data, output_json, message)
    if not result.success:
        raise typer.Exit(1)


def watch_command(
    interval: float = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between connectivity checks (default: from config)",
    ),
) -> None:
    """Run in the foreground, draining the queue whenever the network is up.

    Press Ctrl+C to stop.
    """
    settings = get_settings()
    probe_interval = interval or settings.probe_interval

    async def _watch() -> None:
        services = build_services(settings)
        try:
            await services.monitor.refresh()
            services.sync.start()
            await services.monitor.watch(probe_interval)
        finally:
            await services.close()

    typer.echo("Watching connectivity. Press Ctrl+C to stop.")
    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        pass
