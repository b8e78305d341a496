"""Process-wide wiring of the sync components."""

from dataclasses import dataclass

from itemize_sync.auth import SessionProvider, StaticSessionProvider
from itemize_sync.config import Settings
from itemize_sync.engine.orchestrator import CaptureOrchestrator
from itemize_sync.monitor.network import NetworkMonitor
from itemize_sync.monitor.probe import ReachabilityProbe
from itemize_sync.storage.backends import EncryptedSQLiteBackend, load_or_create_key
from itemize_sync.storage.files import LocalFileStore
from itemize_sync.storage.secure import ChunkedSecureStore
from itemize_sync.sync.orchestrator import SyncOrchestrator
from itemize_sync.sync.queue import SyncQueue
from itemize_sync.sync.uploader import ExtractionClient


@dataclass
class Services:
    """The single set of sync components for this process."""

    backend: EncryptedSQLiteBackend
    store: ChunkedSecureStore
    files: LocalFileStore
    queue: SyncQueue
    probe: ReachabilityProbe
    monitor: NetworkMonitor
    client: ExtractionClient
    sessions: SessionProvider
    sync: SyncOrchestrator
    capture: CaptureOrchestrator

    async def close(self) -> None:
        await self.sync.stop()
        await self.client.close()
        await self.probe.close()
        self.backend.close()


def build_services(settings: Settings, sessions: SessionProvider | None = None) -> Services:
    """Construct all components from settings.

    Args:
        settings: Loaded configuration
        sessions: Session provider, defaults to tokens from settings
    """
    key = load_or_create_key(settings.key_path, settings.encryption_key)
    backend = EncryptedSQLiteBackend(settings.secure_db_path, key)
    store = ChunkedSecureStore(backend, chunk_size=settings.chunk_size)
    files = LocalFileStore(store, settings.receipts_path)
    queue = SyncQueue(store)

    probe = ReachabilityProbe(settings.effective_probe_url, timeout=min(settings.request_timeout, 5.0))
    monitor = NetworkMonitor(source=probe)
    client = ExtractionClient(settings.api_url, timeout=settings.request_timeout)
    sessions = sessions or StaticSessionProvider(settings.access_token, settings.refresh_token)

    sync = SyncOrchestrator(queue, files, monitor, client, sessions)
    capture = CaptureOrchestrator(files, queue, monitor, client, sessions, sync=sync)

    return Services(
        backend=backend,
        store=store,
        files=files,
        queue=queue,
        probe=probe,
        monitor=monitor,
        client=client,
        sessions=sessions,
        sync=sync,
        capture=capture,
    )
