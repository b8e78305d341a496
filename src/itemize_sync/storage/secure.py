"""Chunked secure store layered on a size-limited key-value backend.

Values longer than the chunk size are split into ordered slices stored under
``<key>_chunk_<i>``; the primary key then holds the sentinel ``_chunk_<N>``.
Overwrites of a chunked value alternate between two chunk slots (the second
one uses ``<key>_chunk_b<i>`` and the sentinel ``_chunk_<N>b``), so the
sentinel always points at a complete set of slices. Chunks are written
before the sentinel flips, and the previous slot is cleared afterwards.
"""

import json
import logging
import re
from typing import Any

from itemize_sync.exceptions import StorageError
from itemize_sync.storage.backends import KeyValueBackend

logger = logging.getLogger(__name__)

CHUNK_SIZE = 2000
CHUNK_PREFIX = "_chunk_"
ALT_SLOT = "b"

_VALID_KEY = re.compile(r"^[a-zA-Z0-9._-]+$")
_SENTINEL = re.compile(r"^_chunk_(\d+)(b?)$")


def is_valid_key(key: str) -> bool:
    """Check a key against the backend's safe character set."""
    return isinstance(key, str) and bool(_VALID_KEY.match(key))


def split_into_chunks(value: str, size: int) -> list[str]:
    """Split a string into consecutive slices of at most ``size`` characters."""
    return [value[i:i + size] for i in range(0, len(value), size)]


def chunk_key(key: str, index: int, slot: str = "") -> str:
    return f"{key}{CHUNK_PREFIX}{slot}{index}"


def _parse_sentinel(raw: str | None) -> tuple[int, str] | None:
    """Return (N, slot) for a sentinel value, None for anything else."""
    if raw is None:
        return None
    match = _SENTINEL.match(raw)
    if not match:
        return None
    return int(match.group(1)), match.group(2)


class ChunkedSecureStore:
    """Encrypted key/value persistence that transparently chunks large values.

    Invalid keys are ignored rather than raising, so a malformed identifier
    coming from a caller can never crash the app. Read failures and corrupt
    data come back as None. A write that fails partway leaves the previous
    value readable.

    Example:
        store = ChunkedSecureStore(MemoryBackend())
        store.set_json("ii_syncQueue", [])
        items = store.get_json("ii_syncQueue")
    """

    def __init__(self, backend: KeyValueBackend, chunk_size: int = CHUNK_SIZE) -> None:
        """Initialize the store.

        Args:
            backend: Size-limited key-value primitive
            chunk_size: Maximum characters stored under a single key
        """
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._backend = backend
        self.chunk_size = chunk_size

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def set(self, key: str, value: str) -> None:
        """Store a value, chunking it when it exceeds the chunk size.

        Raises:
            StorageError: If the backend fails to write
        """
        if not is_valid_key(key):
            logger.warning("Invalid secure store key, skipping set: %r", key)
            return

        current = _parse_sentinel(self._backend.get_item(key))

        # A raw value must never look like a sentinel
        if len(value) <= self.chunk_size and not value.startswith(CHUNK_PREFIX):
            self._backend.set_item(key, value)
            self._purge_slot(key, "")
            self._purge_slot(key, ALT_SLOT)
            return

        slot = ALT_SLOT if current is not None and current[1] == "" else ""
        chunks = split_into_chunks(value, self.chunk_size)
        for i, chunk in enumerate(chunks):
            self._backend.set_item(chunk_key(key, i, slot), chunk)
        # Leftovers from an earlier interrupted write to this slot
        self._purge_slot(key, slot, start=len(chunks))

        self._backend.set_item(key, f"{CHUNK_PREFIX}{len(chunks)}{slot}")

        if current is not None:
            self._purge_slot(key, current[1])

    def get(self, key: str) -> str | None:
        """Read a value, reassembling chunks if needed.

        Returns:
            The stored string, or None if missing, invalid, or corrupt
        """
        if not is_valid_key(key):
            logger.warning("Invalid secure store key, skipping get: %r", key)
            return None

        try:
            raw = self._backend.get_item(key)
            if raw is None:
                return None

            sentinel = _parse_sentinel(raw)
            if sentinel is None:
                return raw

            count, slot = sentinel
            chunks = []
            for i in range(count):
                chunk = self._backend.get_item(chunk_key(key, i, slot))
                if chunk is None:
                    logger.warning("Missing chunk %d of %d for key=%s", i, count, key)
                    return None
                chunks.append(chunk)
            return "".join(chunks)
        except StorageError as e:
            logger.error("Secure store read failed for key=%s: %s", key, e)
            return None

    def remove(self, key: str) -> None:
        """Delete a value together with every chunk it references."""
        if not is_valid_key(key):
            return

        try:
            self._purge_slot(key, "")
            self._purge_slot(key, ALT_SLOT)
            self._backend.delete_item(key)
        except StorageError as e:
            logger.error("Secure store remove failed for key=%s: %s", key, e)

    def _purge_slot(self, key: str, slot: str, start: int = 0) -> None:
        """Delete consecutive chunks of one slot until the first gap."""
        index = start
        while self._backend.get_item(chunk_key(key, index, slot)) is not None:
            self._backend.delete_item(chunk_key(key, index, slot))
            index += 1

    def set_json(self, key: str, data: Any) -> None:
        """Serialize data as JSON and store it."""
        self.set(key, json.dumps(data))

    def get_json(self, key: str) -> Any | None:
        """Load and parse a JSON value.

        Returns:
            Parsed data, or None if missing or unparseable
        """
        raw = self.get(key)
        if not raw:
            return None

        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Failed to parse secure JSON for key=%s", key)
            return None
