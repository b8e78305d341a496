"""Durable sync queue for offline receipt uploads.

The queue is a single ordered list persisted as one JSON blob in the
chunked secure store. Every mutation is a full read-modify-write; the sync
orchestrator's single-flight guard keeps writers serialized within a process.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from itemize_sync.storage.files import LocalFileMetadata
from itemize_sync.storage.secure import ChunkedSecureStore

logger = logging.getLogger(__name__)

SYNC_QUEUE_KEY = "ii_syncQueue"
LAST_SYNC_AT_KEY = "ii_lastSyncAt"


class SyncOperationType(str, Enum):
    """Kinds of queued operations."""

    RECEIPT_UPLOAD = "RECEIPT_UPLOAD"


class SyncStatus(str, Enum):
    """Lifecycle state of a queue item."""

    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters for failed deliveries."""

    max_attempts: int = 5
    base_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: int = 2


RETRY_CONFIG = RetryConfig()


def get_retry_delay(attempts: int, config: RetryConfig = RETRY_CONFIG) -> int:
    """Delay in milliseconds before the next attempt.

    ``min(base * multiplier**attempts, max)``: 1000, 2000, 4000, 8000, 16000
    for attempts 0..4, capped at 60000.
    """
    delay = config.base_delay_ms * config.backoff_multiplier ** max(attempts, 0)
    return min(delay, config.max_delay_ms)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ReceiptUploadPayload:
    """Reference to a locally stored receipt awaiting upload."""

    type: ClassVar[SyncOperationType] = SyncOperationType.RECEIPT_UPLOAD

    local_file_uri: str
    file_name: str
    mime_type: str
    file_size: int
    captured_at: str
    local_id: str

    @classmethod
    def from_metadata(cls, metadata: LocalFileMetadata) -> "ReceiptUploadPayload":
        return cls(
            local_file_uri=metadata.local_file_uri,
            file_name=metadata.file_name,
            mime_type=metadata.mime_type,
            file_size=metadata.file_size,
            captured_at=metadata.captured_at,
            local_id=metadata.local_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "localFileUri": self.local_file_uri,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
            "fileSize": self.file_size,
            "capturedAt": self.captured_at,
            "localId": self.local_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReceiptUploadPayload":
        return cls(
            local_file_uri=str(data["localFileUri"]),
            file_name=str(data["fileName"]),
            mime_type=str(data["mimeType"]),
            file_size=int(data["fileSize"]),
            captured_at=str(data["capturedAt"]),
            local_id=str(data["localId"]),
        )


# Payload class per operation type; new upload kinds register here
PAYLOAD_TYPES: dict[SyncOperationType, type[ReceiptUploadPayload]] = {
    SyncOperationType.RECEIPT_UPLOAD: ReceiptUploadPayload,
}


@dataclass
class SyncQueueItem:
    """A single durable delivery task."""

    id: str
    type: SyncOperationType
    payload: ReceiptUploadPayload
    status: SyncStatus = SyncStatus.PENDING
    attempts: int = 0
    last_attempt_at: str | None = None
    error: str | None = None
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload.to_dict(),
            "status": self.status.value,
            "attempts": self.attempts,
            "lastAttemptAt": self.last_attempt_at,
            "error": self.error,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncQueueItem":
        """Build from a persisted record.

        Raises:
            KeyError, ValueError, TypeError: If the record is malformed
        """
        op_type = SyncOperationType(data["type"])
        return cls(
            id=str(data["id"]),
            type=op_type,
            payload=PAYLOAD_TYPES[op_type].from_dict(data["payload"]),
            status=SyncStatus(data["status"]),
            attempts=int(data.get("attempts", 0)),
            last_attempt_at=data.get("lastAttemptAt"),
            error=data.get("error"),
            created_at=str(data["createdAt"]),
        )


_UPDATABLE_FIELDS = {"status", "attempts", "last_attempt_at", "error"}


class SyncQueue:
    """Ordered queue of upload tasks persisted in the secure store.

    Items are kept in enqueue order, so the first pending item is always
    the oldest one.

    Example:
        queue = SyncQueue(store)
        item = queue.add_to_queue(SyncOperationType.RECEIPT_UPLOAD, payload)
        queue.mark_syncing(item.id)
        queue.mark_completed(item.id)
    """

    def __init__(self, store: ChunkedSecureStore, retry_config: RetryConfig = RETRY_CONFIG) -> None:
        """Initialize the sync queue.

        Args:
            store: Secure store holding the queue blob
            retry_config: Attempt limit and backoff parameters
        """
        self._store = store
        self.retry_config = retry_config

    def get_queue_items(self) -> list[SyncQueueItem]:
        """Load all items; corrupt storage reads as an empty queue."""
        raw = self._store.get_json(SYNC_QUEUE_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Sync queue blob is not a list, treating as empty")
            return []

        items = []
        for record in raw:
            try:
                items.append(SyncQueueItem.from_dict(record))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed queue record: %s", e)
        return items

    def _save(self, items: list[SyncQueueItem]) -> None:
        self._store.set_json(SYNC_QUEUE_KEY, [item.to_dict() for item in items])

    def add_to_queue(
        self,
        op_type: SyncOperationType,
        payload: ReceiptUploadPayload,
    ) -> SyncQueueItem:
        """Append a new pending item.

        Enqueuing a local id that already has an active item returns the
        existing item instead of creating a duplicate.

        Args:
            op_type: Operation type tag
            payload: Payload matching the operation type

        Returns:
            The queued item
        """
        if not isinstance(payload, PAYLOAD_TYPES[op_type]):
            raise TypeError(f"payload for {op_type.value} must be {PAYLOAD_TYPES[op_type].__name__}")

        items = self.get_queue_items()
        for existing in items:
            if existing.payload.local_id == payload.local_id and existing.status != SyncStatus.COMPLETED:
                logger.debug("Local id already queued: local_id=%s, item_id=%s", payload.local_id, existing.id)
                return existing

        item = SyncQueueItem(id=generate_id(), type=op_type, payload=payload)
        items.append(item)
        self._save(items)
        return item

    def update_queue_item(self, item_id: str, **updates: Any) -> SyncQueueItem | None:
        """Apply field updates to one item.

        Only status, attempts, last_attempt_at and error may change.

        Returns:
            The updated item, or None if no item has that id
        """
        unknown = set(updates) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update fields: {sorted(unknown)}")

        items = self.get_queue_items()
        for index, item in enumerate(items):
            if item.id == item_id:
                items[index] = replace(item, **updates)
                self._save(items)
                return items[index]
        return None

    def remove_from_queue(self, item_id: str) -> bool:
        items = self.get_queue_items()
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            return False
        self._save(remaining)
        return True

    def get_item(self, item_id: str) -> SyncQueueItem | None:
        return next((item for item in self.get_queue_items() if item.id == item_id), None)

    def get_pending_items(self) -> list[SyncQueueItem]:
        """Pending items, oldest first."""
        return [item for item in self.get_queue_items() if item.status == SyncStatus.PENDING]

    def get_failed_items(self) -> list[SyncQueueItem]:
        return [item for item in self.get_queue_items() if item.status == SyncStatus.FAILED]

    def get_retryable_items(self) -> list[SyncQueueItem]:
        """Failed items that still have attempts left."""
        return [
            item for item in self.get_failed_items()
            if item.attempts < self.retry_config.max_attempts
        ]

    def mark_syncing(self, item_id: str) -> SyncQueueItem | None:
        """Move a pending item to syncing and stamp the attempt time.

        Returns:
            The updated item, or None if it is missing or not pending
        """
        item = self.get_item(item_id)
        if item is None or item.status != SyncStatus.PENDING:
            return None
        return self.update_queue_item(
            item_id,
            status=SyncStatus.SYNCING,
            last_attempt_at=_now(),
        )

    def mark_completed(self, item_id: str) -> bool:
        """Remove an item after successful delivery."""
        return self.remove_from_queue(item_id)

    def mark_failed(self, item_id: str, error: str) -> SyncQueueItem | None:
        """Record a failed attempt.

        The item becomes terminally failed once attempts reach the limit;
        otherwise it goes back to pending for another try.

        Returns:
            The updated item, or None if no item has that id
        """
        item = self.get_item(item_id)
        if item is None:
            return None

        attempts = item.attempts + 1
        status = (
            SyncStatus.FAILED
            if attempts >= self.retry_config.max_attempts
            else SyncStatus.PENDING
        )
        return self.update_queue_item(
            item_id,
            status=status,
            attempts=attempts,
            error=error,
            last_attempt_at=_now(),
        )

    def retry_failed_items(self) -> int:
        """Put every failed item back to pending, keeping its attempt count.

        Returns:
            Number of items reset
        """
        items = self.get_queue_items()
        count = 0
        for index, item in enumerate(items):
            if item.status == SyncStatus.FAILED:
                items[index] = replace(item, status=SyncStatus.PENDING)
                count += 1
        if count:
            self._save(items)
        return count

    def reset_item(self, item_id: str) -> SyncQueueItem | None:
        """Put a single failed item back to pending."""
        item = self.get_item(item_id)
        if item is None or item.status != SyncStatus.FAILED:
            return None
        return self.update_queue_item(item_id, status=SyncStatus.PENDING)

    def recover_interrupted(self) -> int:
        """Return items stuck in syncing (process killed mid-upload) to pending.

        Returns:
            Number of items recovered
        """
        items = self.get_queue_items()
        count = 0
        for index, item in enumerate(items):
            if item.status == SyncStatus.SYNCING:
                items[index] = replace(item, status=SyncStatus.PENDING)
                count += 1
        if count:
            self._save(items)
            logger.info("Recovered interrupted uploads: count=%d", count)
        return count

    def clear_completed_items(self) -> int:
        items = self.get_queue_items()
        remaining = [item for item in items if item.status != SyncStatus.COMPLETED]
        removed = len(items) - len(remaining)
        if removed:
            self._save(remaining)
        return removed

    def clear_queue(self) -> None:
        self._save([])

    def get_queue_counts(self) -> dict[str, int]:
        """Get queue statistics.

        Returns:
            Dictionary with counts by status plus total
        """
        counts = {"pending": 0, "syncing": 0, "failed": 0, "total": 0}
        for item in self.get_queue_items():
            if item.status.value in counts:
                counts[item.status.value] += 1
            counts["total"] += 1
        return counts

    def update_last_sync_at(self, when: datetime | None = None) -> None:
        when = when or datetime.now(timezone.utc)
        self._store.set(LAST_SYNC_AT_KEY, when.isoformat())

    def get_last_sync_at(self) -> datetime | None:
        raw = self._store.get(LAST_SYNC_AT_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
