"""Storage module for encrypted metadata and local receipt files."""

from itemize_sync.storage.backends import EncryptedSQLiteBackend, KeyValueBackend, MemoryBackend
from itemize_sync.storage.files import LocalFileMetadata, LocalFileStore
from itemize_sync.storage.secure import ChunkedSecureStore

__all__ = [
    "ChunkedSecureStore",
    "EncryptedSQLiteBackend",
    "KeyValueBackend",
    "LocalFileMetadata",
    "LocalFileStore",
    "MemoryBackend",
]
