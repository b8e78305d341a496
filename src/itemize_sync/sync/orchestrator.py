"""Sync orchestrator draining the offline queue to the extraction endpoint."""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from itemize_sync.auth import SessionProvider
from itemize_sync.exceptions import ItemizeSyncError
from itemize_sync.logging import log_upload_failed
from itemize_sync.monitor.network import NetworkMonitor
from itemize_sync.storage.files import LocalFileStore
from itemize_sync.sync.queue import SyncQueue, SyncQueueItem, get_retry_delay
from itemize_sync.sync.uploader import ExtractionClient, deliver_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncState:
    """Snapshot of orchestrator state published to subscribers."""

    is_syncing: bool = False
    current_item: SyncQueueItem | None = None
    pending_count: int = 0
    failed_count: int = 0
    total_count: int = 0
    last_error: str | None = None
    last_sync_at: datetime | None = None


class SyncOrchestrator:
    """Drains pending queue items one at a time, oldest first.

    A boolean in-flight flag makes ``start_sync`` single-flight: a call made
    while a drain is running returns immediately and relies on the running
    drain to pick up everything pending. After a failed item the drain stops
    and a single retry timer is armed using the queue's backoff delay.

    Example:
        orchestrator = SyncOrchestrator(queue, files, monitor, client, sessions)
        orchestrator.start()
        await orchestrator.start_sync()
    """

    def __init__(
        self,
        queue: SyncQueue,
        files: LocalFileStore,
        monitor: NetworkMonitor,
        client: ExtractionClient,
        sessions: SessionProvider,
    ) -> None:
        """Initialize the sync orchestrator.

        Args:
            queue: Durable queue of upload tasks
            files: Store holding the queued files
            monitor: Network monitor gating the drain
            client: Extraction endpoint client
            sessions: Provider of bearer credentials
        """
        self._queue = queue
        self._files = files
        self._monitor = monitor
        self._client = client
        self._sessions = sessions

        self._state = SyncState()
        self._listeners: list[Callable[[SyncState], None]] = []

        self._in_flight = False
        self._retry_handle: asyncio.TimerHandle | None = None
        self._retry_delay_ms: int | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: list[Callable[[], None]] = []
        self._stranded = False
        self._error_streak = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    @property
    def retry_delay_ms(self) -> int | None:
        """Delay of the currently armed retry timer, None if none is armed."""
        return self._retry_delay_ms

    def subscribe(self, listener: Callable[[SyncState], None]) -> Callable[[], None]:
        """Register a listener called with every new SyncState.

        Returns:
            Function that unregisters the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Sync state listener failed")

    def refresh(self) -> SyncState:
        """Recompute queue counts and last sync time."""
        counts = self._queue.get_queue_counts()
        self._set_state(
            pending_count=counts["pending"],
            failed_count=counts["failed"],
            total_count=counts["total"],
            last_sync_at=self._queue.get_last_sync_at(),
        )
        return self._state

    def start(self) -> None:
        """Wire triggers and kick off the first drain.

        Items left in syncing by an abrupt shutdown are returned to pending
        before anything else runs. Must be called from a running event loop.
        """
        self._queue.recover_interrupted()
        self._unsubscribe.append(
            self._monitor.on_connectivity_restored(lambda: self.request_sync("connectivity_restored"))
        )
        self.refresh()
        if self._monitor.is_online:
            self.request_sync("startup")

    def request_sync(self, reason: str) -> asyncio.Task | None:
        """Schedule ``start_sync`` on the running loop.

        Returns:
            The scheduled task, or None when a drain is already running
        """
        if self._in_flight:
            logger.debug("Sync already running, ignoring trigger: reason=%s", reason)
            return None

        logger.debug("Sync requested: reason=%s", reason)
        task = asyncio.get_running_loop().create_task(self.start_sync())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def handle_foreground(self) -> None:
        """App returned to the foreground: recheck network, drain if online."""
        await self._monitor.handle_foreground()
        if self._monitor.is_online:
            await self.start_sync()

    async def start_sync(self) -> None:
        """Drain pending items while online.

        Never raises. A failed delivery ends as a queue transition; a storage
        failure arms the retry timer and the next drain first returns the
        stranded item to pending.
        """
        if self._in_flight or not self._monitor.is_online:
            return

        self._in_flight = True
        self._set_state(is_syncing=True)

        try:
            if self._stranded:
                # An earlier drain died between mark_syncing and its outcome
                self._queue.recover_interrupted()
                self._stranded = False

            pending = self._queue.get_pending_items()

            while pending and self._monitor.is_online:
                failed = await self._process_item(pending[0])
                if failed is not None:
                    self._schedule_retry(get_retry_delay(failed.attempts, self._queue.retry_config))
                    break
                pending = self._queue.get_pending_items()

            self._error_streak = 0

        except Exception:
            logger.exception("Sync error")
            self._stranded = True
            self._error_streak += 1
            self._schedule_retry(get_retry_delay(self._error_streak, self._queue.retry_config))
        finally:
            self._in_flight = False
            self._set_state(is_syncing=False)
            self.refresh()

    async def _process_item(self, item: SyncQueueItem) -> SyncQueueItem | None:
        """Deliver one item.

        Returns:
            None when the item is done (delivered, already gone, or removed
            meanwhile); the updated item after a failed attempt
        """
        self._set_state(current_item=item)
        try:
            if self._queue.mark_syncing(item.id) is None:
                return None

            payload = item.payload
            if not self._files.local_file_exists(payload.local_file_uri):
                # Nothing left to upload
                logger.info("Local file gone, completing item: item_id=%s", item.id)
                self._files.delete_local_receipt(payload.local_id)
                self._queue.mark_completed(item.id)
                return None

            await deliver_file(
                self._client, self._sessions, self._files, payload.local_file_uri, item_id=item.id
            )

            self._files.delete_local_receipt(payload.local_id)
            self._queue.mark_completed(item.id)
            self._queue.update_last_sync_at()
            self._set_state(last_error=None)
            return None

        except Exception as e:
            if not isinstance(e, (ItemizeSyncError, OSError)):
                logger.exception("Unexpected error delivering item_id=%s", item.id)
            message = str(e) or "Sync failed"
            failed = self._queue.mark_failed(item.id, message)
            self._set_state(last_error=message)
            if failed is None:
                return None
            log_upload_failed(logger, item.id, message, failed.attempts)
            return failed

        finally:
            self._set_state(current_item=None)

    def _schedule_retry(self, delay_ms: int) -> None:
        """Arm the retry timer, replacing any previous one."""
        self._cancel_retry()
        self._retry_delay_ms = delay_ms
        self._retry_handle = asyncio.get_running_loop().call_later(delay_ms / 1000, self._on_retry_timer)
        logger.debug("Retry scheduled: delay_ms=%d", delay_ms)

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
        self._retry_handle = None
        self._retry_delay_ms = None

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._retry_delay_ms = None
        if self._monitor.is_online:
            self.request_sync("retry_timer")

    async def retry_all(self) -> int:
        """Manual retry-all: reset failed items and drain.

        Returns:
            Number of items put back to pending
        """
        count = self._queue.retry_failed_items()
        self.refresh()
        await self.start_sync()
        return count

    async def retry_item(self, item_id: str) -> bool:
        """Manual retry of one failed item."""
        if self._queue.reset_item(item_id) is None:
            return False
        self.refresh()
        await self.start_sync()
        return True

    def delete_item(self, item_id: str) -> bool:
        """Drop a queued upload and its local file.

        Returns:
            True if the queue item existed
        """
        item = self._queue.get_item(item_id)
        if item is None:
            return False
        self._files.delete_local_receipt(item.payload.local_id)
        self._queue.remove_from_queue(item_id)
        self.refresh()
        return True

    async def stop(self) -> None:
        """Cancel the retry timer and any scheduled drains, detach triggers."""
        self._cancel_retry()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
