"""Helpers shared by CLI commands."""

import asyncio
import json
from typing import Any, Awaitable, Callable, TypeVar

import typer

from itemize_sync.app import Services, build_services
from itemize_sync.config import get_settings

T = TypeVar("T")


def _output(data: dict, as_json: bool, human_message: str) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data, default=str))
    else:
        typer.echo(human_message)


def run_with_services(action: Callable[[Services], Awaitable[T]], check_network: bool = True) -> T:
    """Build services, run an async action against them, and clean up.

    Args:
        action: Coroutine function receiving the Services bundle
        check_network: Probe connectivity before running the action
    """

    async def _main() -> T:
        services = build_services(get_settings())
        try:
            if check_network:
                await services.monitor.refresh()
            return await action(services)
        finally:
            await services.close()

    return asyncio.run(_main())


def item_summary(item: Any) -> dict[str, Any]:
    return {
        "id": item.id,
        "local_id": item.payload.local_id,
        "status": item.status.value,
        "attempts": item.attempts,
        "error": item.error,
        "created_at": item.created_at,
    }
