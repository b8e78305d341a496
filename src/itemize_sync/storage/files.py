"""Local file store for captured receipts waiting to be uploaded.

Binary files live in a dedicated directory on disk; their metadata is kept
in a single JSON index inside the chunked secure store, keyed by local id.
"""

import hashlib
import logging
import shutil
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from itemize_sync.storage.secure import ChunkedSecureStore

logger = logging.getLogger(__name__)

METADATA_INDEX_KEY = "ii_offlineReceiptsIndex"

_FIELD_NAMES = {
    "local_id": "localId",
    "file_name": "fileName",
    "mime_type": "mimeType",
    "file_size": "fileSize",
    "captured_at": "capturedAt",
    "local_file_uri": "localFileUri",
    "sha256": "sha256",
}


@dataclass
class LocalFileMetadata:
    """Metadata for a receipt file copied into local storage."""

    local_id: str
    file_name: str
    mime_type: str
    file_size: int
    captured_at: str  # ISO 8601, UTC
    local_file_uri: str
    sha256: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the persisted camelCase field names."""
        return {_FIELD_NAMES[name]: value for name, value in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LocalFileMetadata":
        """Build from a persisted record.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            local_id=str(data["localId"]),
            file_name=str(data["fileName"]),
            mime_type=str(data["mimeType"]),
            file_size=int(data["fileSize"]),
            captured_at=str(data["capturedAt"]),
            local_file_uri=str(data["localFileUri"]),
            sha256=data.get("sha256"),
        )


def generate_local_id() -> str:
    """Millisecond timestamp plus a random suffix, sortable by creation."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def uri_to_path(uri: str | Path) -> Path:
    """Accept plain paths as well as ``file://`` URIs."""
    text = str(uri)
    if text.startswith("file://"):
        text = text[len("file://"):]
    return Path(text)


def get_extension(uri: str, file_name: str | None = None) -> str:
    """Pick a file extension from the file name, falling back to the URI."""
    if file_name and "." in file_name:
        ext = file_name.rsplit(".", 1)[1]
        if ext:
            return ext
    tail = str(uri).rsplit("/", 1)[-1].split("?", 1)[0]
    if "." in tail:
        return tail.rsplit(".", 1)[1] or "bin"
    return "bin"


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return digest.hexdigest()


class LocalFileStore:
    """Persists captured files and their metadata index.

    Every index mutation rewrites the whole map, which is fine for the
    handful of receipts expected to wait offline at any time.
    """

    def __init__(self, store: ChunkedSecureStore, receipts_dir: Path) -> None:
        """Initialize the file store.

        Args:
            store: Secure store holding the metadata index
            receipts_dir: Directory for copied receipt files
        """
        self._store = store
        self.receipts_dir = receipts_dir

    def _ensure_directory(self) -> None:
        self.receipts_dir.mkdir(parents=True, exist_ok=True)

    def _get_index(self) -> dict[str, LocalFileMetadata]:
        raw = self._store.get_json(METADATA_INDEX_KEY)
        if not isinstance(raw, dict):
            return {}

        index = {}
        for local_id, record in raw.items():
            try:
                index[local_id] = LocalFileMetadata.from_dict(record)
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed file index entry: local_id=%s", local_id)
        return index

    def _save_index(self, index: dict[str, LocalFileMetadata]) -> None:
        self._store.set_json(
            METADATA_INDEX_KEY,
            {local_id: metadata.to_dict() for local_id, metadata in index.items()},
        )

    def save_local_receipt(
        self,
        source_uri: str | Path,
        file_name: str,
        mime_type: str,
        file_size: int,
    ) -> LocalFileMetadata:
        """Copy a captured file into local storage and register it.

        Args:
            source_uri: Path or file:// URI of the captured image
            file_name: Display file name
            mime_type: MIME type of the file
            file_size: Size in bytes as reported by the caller

        Returns:
            Metadata of the stored copy

        Raises:
            OSError: If the file cannot be copied
        """
        self._ensure_directory()

        local_id = generate_local_id()
        ext = get_extension(str(source_uri), file_name)
        local_path = self.receipts_dir / f"{local_id}.{ext}"

        shutil.copyfile(uri_to_path(source_uri), local_path)

        metadata = LocalFileMetadata(
            local_id=local_id,
            file_name=file_name,
            mime_type=mime_type,
            file_size=file_size,
            captured_at=datetime.now(timezone.utc).isoformat(),
            local_file_uri=str(local_path),
            sha256=file_sha256(local_path),
        )

        index = self._get_index()
        index[local_id] = metadata
        self._save_index(index)

        logger.debug("Saved local receipt: local_id=%s, path=%s", local_id, local_path)
        return metadata

    def get_local_receipt(self, local_id: str) -> LocalFileMetadata | None:
        return self._get_index().get(local_id)

    def delete_local_receipt(self, local_id: str) -> bool:
        """Delete a stored file and its index entry.

        Deleting a file that is already gone is not an error.

        Returns:
            True if an index entry existed and was removed
        """
        index = self._get_index()
        metadata = index.get(local_id)
        if metadata is None:
            return False

        try:
            uri_to_path(metadata.local_file_uri).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete local receipt: local_id=%s, error=%s", local_id, e)
            return False

        del index[local_id]
        self._save_index(index)
        return True

    def get_offline_receipts(self) -> list[LocalFileMetadata]:
        """Return all stored receipts, oldest capture first."""
        return sorted(self._get_index().values(), key=lambda m: m.captured_at)

    def local_file_exists(self, local_file_uri: str) -> bool:
        try:
            return uri_to_path(local_file_uri).is_file()
        except OSError:
            return False

    def read_local_file(self, local_file_uri: str | Path) -> bytes:
        """Read the bytes of a receipt file, stored or freshly captured.

        Raises:
            OSError: If the file cannot be read
        """
        return uri_to_path(local_file_uri).read_bytes()

    def find_by_hash(self, sha256: str) -> LocalFileMetadata | None:
        """Find a stored receipt with identical content, if any."""
        for metadata in self.get_offline_receipts():
            if metadata.sha256 == sha256:
                return metadata
        return None

    def get_offline_storage_size(self) -> int:
        """Total bytes of receipts waiting in local storage."""
        return sum(m.file_size for m in self._get_index().values())

    def clear_offline_receipts(self) -> None:
        """Delete every stored file and the metadata index."""
        shutil.rmtree(self.receipts_dir, ignore_errors=True)
        self._ensure_directory()
        self._store.remove(METADATA_INDEX_KEY)
