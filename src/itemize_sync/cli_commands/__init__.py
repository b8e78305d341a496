"""CLI command modules for the itemize sync agent."""

from itemize_sync.cli_commands.capture import capture_command, watch_command
from itemize_sync.cli_commands.queue import delete_command, pending_command, retry_command, sync_command
from itemize_sync.cli_commands.status import status_command

__all__ = [
    "capture_command",
    "delete_command",
    "pending_command",
    "retry_command",
    "status_command",
    "sync_command",
    "watch_command",
]
