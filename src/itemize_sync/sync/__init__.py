"""Sync module for the offline upload queue and its drain loop."""

from itemize_sync.sync.orchestrator import SyncOrchestrator, SyncState
from itemize_sync.sync.queue import (
    RETRY_CONFIG,
    ReceiptUploadPayload,
    RetryConfig,
    SyncOperationType,
    SyncQueue,
    SyncQueueItem,
    SyncStatus,
    get_retry_delay,
)
from itemize_sync.sync.uploader import ExtractionClient, deliver_file

__all__ = [
    "RETRY_CONFIG",
    "ExtractionClient",
    "ReceiptUploadPayload",
    "RetryConfig",
    "SyncOperationType",
    "SyncOrchestrator",
    "SyncQueue",
    "SyncQueueItem",
    "SyncState",
    "SyncStatus",
    "deliver_file",
    "get_retry_delay",
]
