"""Shared pytest fixtures for all tests."""

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from itemize_sync.auth import StaticSessionProvider
from itemize_sync.exceptions import StorageError
from itemize_sync.monitor.network import ConnectionType, ConnectivitySnapshot, NetworkMonitor
from itemize_sync.storage.backends import MemoryBackend
from itemize_sync.storage.files import LocalFileStore
from itemize_sync.storage.secure import ChunkedSecureStore
from itemize_sync.sync.orchestrator import SyncOrchestrator
from itemize_sync.sync.queue import ReceiptUploadPayload, SyncOperationType, SyncQueue
from itemize_sync.sync.uploader import ExtractionClient

API_URL = "https://api.test"

RECEIPT_RESPONSE = {
    "receipt": {"id": "rcpt_1", "merchant": "Hardware Store", "total_cents": 4599},
    "items": [{"id": "item_1", "description": "Drill bits", "amount_cents": 4599}],
}

ONLINE = ConnectivitySnapshot(
    is_connected=True,
    is_internet_reachable=True,
    connection_type=ConnectionType.WIFI,
)
OFFLINE = ConnectivitySnapshot(
    is_connected=False,
    is_internet_reachable=False,
    connection_type=ConnectionType.NONE,
)


class FlakyBackend(MemoryBackend):
    """Memory backend whose writes can be made to fail.

    Writes to any key in ``fail_keys`` raise, and once ``writes_left`` reaches
    zero every further write raises.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_keys: set[str] = set()
        self.writes_left: int | None = None

    def set_item(self, key: str, value: str) -> None:
        if key in self.fail_keys or self.writes_left == 0:
            raise StorageError("disk full")
        if self.writes_left is not None:
            self.writes_left -= 1
        super().set_item(key, value)


class FakeExtractionServer:
    """Scriptable stand-in for the extraction endpoint.

    Queue responses with ``respond``; once the script runs out every request
    succeeds with RECEIPT_RESPONSE. An Exception in the script is raised
    instead of returning a response.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.script: list[tuple[int, Any] | Exception] = []
        self.on_request: Callable[[httpx.Request], None] | None = None
        self.active = 0
        self.max_active = 0

    def respond(self, status: int, body: Any = None) -> None:
        self.script.append((status, body))

    def fail_with(self, error: Exception) -> None:
        self.script.append(error)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_request is not None:
                self.on_request(request)
            await asyncio.sleep(0)

            step = self.script.pop(0) if self.script else (200, RECEIPT_RESPONSE)
            if isinstance(step, Exception):
                raise step
            status, body = step
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=body or "")
        finally:
            self.active -= 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent_images(self) -> list[str]:
        return [json.loads(request.content)["imageBase64"] for request in self.requests]


@pytest.fixture
def backend():
    """In-memory key-value backend."""
    return MemoryBackend()


@pytest.fixture
def store(backend):
    """Chunked secure store over the memory backend."""
    return ChunkedSecureStore(backend)


@pytest.fixture
def files(store, tmp_path):
    """Local file store writing into a temporary directory."""
    return LocalFileStore(store, tmp_path / "ii-offline-receipts")


@pytest.fixture
def queue(store):
    """Sync queue with the default retry configuration."""
    return SyncQueue(store)


@pytest.fixture
def monitor():
    """Network monitor that starts online."""
    return NetworkMonitor()


@pytest.fixture
def server():
    """Fake extraction endpoint."""
    return FakeExtractionServer()


@pytest.fixture
def client(server):
    """Extraction client wired to the fake endpoint."""
    return ExtractionClient(API_URL, transport=server.transport)


@pytest.fixture
def sessions():
    """Session provider with a valid token."""
    return StaticSessionProvider("test-access-token")


@pytest.fixture
def sync(queue, files, monitor, client, sessions):
    """Sync orchestrator over the shared fixtures."""
    return SyncOrchestrator(queue, files, monitor, client, sessions)


@pytest.fixture
def sample_image(tmp_path):
    """A captured receipt image on disk."""
    path = tmp_path / "capture" / "IMG_0001.jpg"
    path.parent.mkdir()
    path.write_bytes(b"\xff\xd8\xff\xe0" + b"receipt-bytes" * 50)
    return path


@pytest.fixture
def make_capture(tmp_path):
    """Factory writing distinct captured images."""
    counter = {"n": 0}

    def _make():
        counter["n"] += 1
        path = tmp_path / "captures" / f"IMG_{counter['n']:04d}.jpg"
        path.parent.mkdir(exist_ok=True)
        path.write_bytes(b"\xff\xd8\xff\xe0" + f"receipt-{counter['n']}".encode() * 50)
        return path

    return _make


@pytest.fixture
def enqueue_receipt(files, queue, tmp_path):
    """Factory storing a receipt locally and queuing it, like an offline capture."""
    counter = {"n": 0}

    def _enqueue(content: bytes | None = None):
        counter["n"] += 1
        source = tmp_path / f"source_{counter['n']}.jpg"
        source.write_bytes(content or f"receipt-{counter['n']}".encode())
        metadata = files.save_local_receipt(
            source, f"receipt-{counter['n']}.jpg", "image/jpeg", source.stat().st_size
        )
        item = queue.add_to_queue(
            SyncOperationType.RECEIPT_UPLOAD,
            ReceiptUploadPayload.from_metadata(metadata),
        )
        return item, metadata

    return _enqueue


@pytest.fixture
def wait_until():
    """Await a condition, yielding to the event loop between checks."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait
