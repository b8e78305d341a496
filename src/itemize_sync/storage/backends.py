"""Key-value primitives underneath the chunked secure store.

Both backends mimic a device keychain: string keys, string values, and a
small per-item size ceiling that callers are expected to respect.
"""

import base64
import logging
import os
import sqlite3
import threading
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from itemize_sync.exceptions import StorageError

logger = logging.getLogger(__name__)

# Per-item ceiling of the platform keychain the store is modelled on
MAX_ITEM_BYTES = 2048

NONCE_BYTES = 12


class KeyValueBackend(Protocol):
    """Minimal interface of a size-limited encrypted key-value primitive."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def delete_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


def _check_size(key: str, value: str) -> None:
    size = len(value.encode("utf-8"))
    if size > MAX_ITEM_BYTES:
        logger.warning(
            "Value for key=%s is %d bytes, above the %d byte item limit",
            key, size, MAX_ITEM_BYTES,
        )


class MemoryBackend:
    """Dict-backed backend for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self.items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        _check_size(key, value)
        self.items[key] = value

    def delete_item(self, key: str) -> None:
        self.items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self.items)


def load_or_create_key(key_path: Path, encoded_key: str | None = None) -> bytes:
    """Return the 256-bit AES key, generating and persisting one if needed.

    Args:
        key_path: File holding the urlsafe-base64 key
        encoded_key: Explicit key from configuration, takes precedence

    Returns:
        Raw 32-byte key
    """
    if encoded_key:
        key = base64.urlsafe_b64decode(encoded_key)
    elif key_path.exists():
        key = base64.urlsafe_b64decode(key_path.read_text().strip())
    else:
        key = AESGCM.generate_key(bit_length=256)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(base64.urlsafe_b64encode(key).decode("ascii"))
        logger.info("Generated new storage key at %s", key_path)

    if len(key) != 32:
        raise ValueError("encryption key must decode to 32 bytes")
    return key


class EncryptedSQLiteBackend:
    """SQLite table of AES-GCM encrypted values.

    Each value is sealed with a fresh nonce and the key name as associated
    data, so a ciphertext copied to another key fails authentication and
    reads back as missing.
    """

    def __init__(self, db_path: Path, key: bytes) -> None:
        """Initialize the backend.

        Args:
            db_path: Path to the SQLite database file
            key: Raw 32-byte AES key
        """
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._aead = AESGCM(key)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._create_table()

    def _create_table(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS secure_items (
                key TEXT PRIMARY KEY,
                nonce BLOB NOT NULL,
                ciphertext BLOB NOT NULL
            )
        """)
        self._conn.commit()

    def get_item(self, key: str) -> str | None:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT nonce, ciphertext FROM secure_items WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

        if row is None:
            return None

        try:
            plaintext = self._aead.decrypt(row[0], row[1], key.encode("utf-8"))
        except InvalidTag:
            logger.warning("Discarding unreadable value for key=%s", key)
            return None
        return plaintext.decode("utf-8")

    def set_item(self, key: str, value: str) -> None:
        _check_size(key, value)
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, value.encode("utf-8"), key.encode("utf-8"))
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO secure_items (key, nonce, ciphertext) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET nonce = excluded.nonce,
                                                   ciphertext = excluded.ciphertext
                    """,
                    (key, nonce, ciphertext),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {key}: {e}") from e

    def delete_item(self, key: str) -> None:
        try:
            with self._lock:
                self._conn.execute("DELETE FROM secure_items WHERE key = ?", (key,))
                self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def keys(self) -> list[str]:
        try:
            with self._lock:
                rows = self._conn.execute("SELECT key FROM secure_items ORDER BY key").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
