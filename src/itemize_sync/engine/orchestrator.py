"""Capture orchestrator: direct upload when online, offline queue otherwise."""

import logging
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from itemize_sync.auth import SessionProvider
from itemize_sync.exceptions import ItemizeSyncError
from itemize_sync.logging import log_queued, log_upload_failed
from itemize_sync.monitor.network import NetworkMonitor
from itemize_sync.storage.files import LocalFileStore, file_sha256, uri_to_path
from itemize_sync.sync.orchestrator import SyncOrchestrator
from itemize_sync.sync.queue import ReceiptUploadPayload, SyncOperationType, SyncQueue
from itemize_sync.sync.uploader import ExtractionClient, deliver_file

logger = logging.getLogger(__name__)

RETRY_MESSAGE_PREFIX = "Upload failed, saved for retry: "


@dataclass
class UploadResult:
    """Outcome of a capture upload."""

    success: bool
    queued: bool
    receipt_data: dict[str, Any] | None = None
    local_id: str | None = None
    error: str | None = None


class CaptureOrchestrator:
    """Entry point for newly captured receipts.

    Online captures go straight to the extraction endpoint with the same
    request the sync drain uses. When offline, or when the direct attempt
    fails, the file is copied into local storage and queued, so both routes
    end in an identical queue item.

    Example:
        capture = CaptureOrchestrator(files, queue, monitor, client, sessions)
        result = await capture.upload_or_queue("/tmp/receipt.jpg")
    """

    def __init__(
        self,
        files: LocalFileStore,
        queue: SyncQueue,
        monitor: NetworkMonitor,
        client: ExtractionClient,
        sessions: SessionProvider,
        sync: SyncOrchestrator | None = None,
    ) -> None:
        """Initialize the capture orchestrator.

        Args:
            files: Local file store for offline copies
            queue: Sync queue receiving offline captures
            monitor: Network monitor deciding the path
            client: Extraction endpoint client
            sessions: Provider of bearer credentials
            sync: Optional sync orchestrator refreshed after queuing
        """
        self._files = files
        self._queue = queue
        self._monitor = monitor
        self._client = client
        self._sessions = sessions
        self._sync = sync
        self._uploading = False

    @property
    def is_uploading(self) -> bool:
        return self._uploading

    async def upload_or_queue(self, local_uri: str | Path) -> UploadResult:
        """Upload a captured file, or save it for later delivery.

        Args:
            local_uri: Path or file:// URI of the captured image

        Returns:
            UploadResult describing whether it was delivered or queued
        """
        self._uploading = True
        try:
            if not self._monitor.is_online:
                return self._queue_or_fail(local_uri, reason="offline")

            try:
                receipt_data = await deliver_file(self._client, self._sessions, self._files, local_uri)
            except (ItemizeSyncError, OSError) as e:
                message = str(e) or "Operation failed"
                log_upload_failed(logger, None, message, attempt_count=1)
                result = self._queue_or_fail(local_uri, reason="upload_failed", error=message)
                if result.queued:
                    result.error = f"{RETRY_MESSAGE_PREFIX}{message}"
                return result

            return UploadResult(success=True, queued=False, receipt_data=receipt_data)
        finally:
            self._uploading = False

    def _queue_or_fail(self, local_uri: str | Path, reason: str, error: str | None = None) -> UploadResult:
        try:
            return self._queue_for_later(local_uri, reason)
        except (ItemizeSyncError, OSError) as e:
            logger.error("Failed to save capture for later: %s", e)
            return UploadResult(success=False, queued=False, error=error or str(e))

    def _queue_for_later(self, local_uri: str | Path, reason: str) -> UploadResult:
        source = uri_to_path(local_uri)

        # A byte-identical capture already waiting is not stored twice
        duplicate = self._files.find_by_hash(file_sha256(source))
        if duplicate is not None:
            item = self._queue.add_to_queue(
                SyncOperationType.RECEIPT_UPLOAD,
                ReceiptUploadPayload.from_metadata(duplicate),
            )
            log_queued(logger, item.id, duplicate.local_id, "duplicate")
            if self._sync is not None:
                self._sync.refresh()
            return UploadResult(success=True, queued=True, local_id=duplicate.local_id)

        file_size = source.stat().st_size
        mime_type = mimetypes.guess_type(source.name)[0] or "image/jpeg"
        extension = mimetypes.guess_extension(mime_type) or ".jpg"

        metadata = self._files.save_local_receipt(
            local_uri,
            f"receipt-{int(time.time() * 1000)}{extension}",
            mime_type,
            file_size,
        )
        try:
            item = self._queue.add_to_queue(
                SyncOperationType.RECEIPT_UPLOAD,
                ReceiptUploadPayload.from_metadata(metadata),
            )
        except ItemizeSyncError:
            # No task would ever deliver or clean up this copy
            self._files.delete_local_receipt(metadata.local_id)
            raise
        log_queued(logger, item.id, metadata.local_id, reason)

        if self._sync is not None:
            self._sync.refresh()

        return UploadResult(success=True, queued=True, local_id=metadata.local_id)
