"""Tests for the local receipt file store."""

import hashlib
from pathlib import Path

import pytest

from itemize_sync.storage.files import (
    METADATA_INDEX_KEY,
    LocalFileStore,
    generate_local_id,
    get_extension,
    uri_to_path,
)


class TestSaveLocalReceipt:
    """Copying captures into local storage."""

    def test_copies_file_and_records_metadata(self, files, sample_image):
        metadata = files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 663)

        stored = Path(metadata.local_file_uri)
        assert stored.parent == files.receipts_dir
        assert stored.name == f"{metadata.local_id}.jpg"
        assert stored.read_bytes() == sample_image.read_bytes()
        assert metadata.file_name == "receipt.jpg"
        assert metadata.mime_type == "image/jpeg"
        assert metadata.file_size == 663
        assert metadata.sha256 == hashlib.sha256(sample_image.read_bytes()).hexdigest()

    def test_source_file_left_in_place(self, files, sample_image):
        files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 1)

        assert sample_image.exists()

    def test_accepts_file_uri(self, files, sample_image):
        metadata = files.save_local_receipt(f"file://{sample_image}", "receipt.png", "image/png", 1)

        assert metadata.local_file_uri.endswith(".png")
        assert files.local_file_exists(metadata.local_file_uri)

    def test_index_persisted_with_camel_case_fields(self, files, store, sample_image):
        metadata = files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 1)

        index = store.get_json(METADATA_INDEX_KEY)
        assert index[metadata.local_id]["localFileUri"] == metadata.local_file_uri
        assert index[metadata.local_id]["capturedAt"] == metadata.captured_at

    def test_missing_source_raises(self, files, tmp_path):
        with pytest.raises(OSError):
            files.save_local_receipt(tmp_path / "nope.jpg", "nope.jpg", "image/jpeg", 0)

        assert files.get_offline_receipts() == []

    def test_index_survives_new_store_instance(self, files, store, sample_image):
        metadata = files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 1)

        reopened = LocalFileStore(store, files.receipts_dir)

        assert reopened.get_local_receipt(metadata.local_id) == metadata


class TestDeleteLocalReceipt:
    """Removing stored files and index entries."""

    def test_delete_removes_file_and_entry(self, files, sample_image):
        metadata = files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 1)

        assert files.delete_local_receipt(metadata.local_id) is True
        assert not Path(metadata.local_file_uri).exists()
        assert files.get_local_receipt(metadata.local_id) is None

    def test_delete_unknown_id_returns_false(self, files):
        assert files.delete_local_receipt("missing") is False

    def test_delete_tolerates_already_removed_file(self, files, sample_image):
        """A file removed out from under the store is not an error."""
        metadata = files.save_local_receipt(sample_image, "receipt.jpg", "image/jpeg", 1)
        Path(metadata.local_file_uri).unlink()

        assert files.delete_local_receipt(metadata.local_id) is True
        assert files.get_local_receipt(metadata.local_id) is None


class TestQueries:
    """Listing, sizing and lookup."""

    def test_offline_receipts_oldest_first(self, files, sample_image):
        first = files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 10)
        second = files.save_local_receipt(sample_image, "b.jpg", "image/jpeg", 20)

        assert [m.local_id for m in files.get_offline_receipts()] == [first.local_id, second.local_id]

    def test_storage_size_sums_file_sizes(self, files, sample_image):
        files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 10)
        files.save_local_receipt(sample_image, "b.jpg", "image/jpeg", 32)

        assert files.get_offline_storage_size() == 42

    def test_find_by_hash(self, files, sample_image, tmp_path):
        other = tmp_path / "other.jpg"
        other.write_bytes(b"different")
        files.save_local_receipt(other, "other.jpg", "image/jpeg", 9)
        metadata = files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 1)

        digest = hashlib.sha256(sample_image.read_bytes()).hexdigest()
        assert files.find_by_hash(digest).local_id == metadata.local_id
        assert files.find_by_hash("0" * 64) is None

    def test_read_local_file(self, files, sample_image):
        metadata = files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 1)

        assert files.read_local_file(metadata.local_file_uri) == sample_image.read_bytes()

    def test_local_file_exists_false_for_missing(self, files, tmp_path):
        assert files.local_file_exists(str(tmp_path / "gone.jpg")) is False

    def test_clear_removes_everything(self, files, store, sample_image):
        metadata = files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 1)

        files.clear_offline_receipts()

        assert files.get_offline_receipts() == []
        assert not Path(metadata.local_file_uri).exists()
        assert files.receipts_dir.is_dir()
        assert store.get(METADATA_INDEX_KEY) is None

    def test_malformed_index_entry_skipped(self, files, store, sample_image):
        metadata = files.save_local_receipt(sample_image, "a.jpg", "image/jpeg", 1)
        index = store.get_json(METADATA_INDEX_KEY)
        index["broken"] = {"localId": "broken"}
        store.set_json(METADATA_INDEX_KEY, index)

        assert [m.local_id for m in files.get_offline_receipts()] == [metadata.local_id]


class TestHelpers:
    @pytest.mark.parametrize(
        "uri,file_name,expected",
        [
            ("/tmp/x.png", "receipt.jpg", "jpg"),
            ("/tmp/x.png", None, "png"),
            ("file:///tmp/x.heic?v=1", "noext", "heic"),
            ("/tmp/noext", None, "bin"),
        ],
    )
    def test_get_extension(self, uri, file_name, expected):
        assert get_extension(uri, file_name) == expected

    def test_uri_to_path_strips_scheme(self):
        assert uri_to_path("file:///var/data/a.jpg") == Path("/var/data/a.jpg")
        assert uri_to_path("/var/data/a.jpg") == Path("/var/data/a.jpg")

    def test_local_ids_are_unique(self):
        ids = {generate_local_id() for _ in range(100)}
        assert len(ids) == 100
