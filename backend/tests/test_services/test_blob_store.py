"""
Unit tests for FilesystemBlobStore

Tests:
- put streams bytes and records provenance metadata
- copy creates a new object and leaves the source untouched
- delete and best-effort discard of unreferenced objects
- missing objects raise BlobNotFoundError
- per-object size cap
- path-unsafe ids and namespaces are rejected
"""
import io
import os

import pytest

from app.services.blob_store import (
    BIOMETRICS_NAMESPACE,
    DOCUMENTS_NAMESPACE,
    OFFLINE_NAMESPACE,
    BlobNotFoundError,
    BlobStorageError,
    BlobTooLargeError,
    FilesystemBlobStore,
    get_blob_store,
)


def _put(store, data=b"jpeg-bytes", **meta):
    metadata = {"tenantId": "tenant-001", "originalFilename": "front.jpg", "contentType": "image/jpeg"}
    metadata.update(meta)
    return store.put(OFFLINE_NAMESPACE, io.BytesIO(data), metadata)


class TestPut:
    """Tests for streaming objects into a namespace."""

    def test_put_returns_descriptor_with_size(self, blob_store):
        info = _put(blob_store, b"x" * 2048)

        assert info.namespace == OFFLINE_NAMESPACE
        assert info.size == 2048
        assert info.content_type == "image/jpeg"
        assert info.filename == "front.jpg"
        assert info.tenant_id == "tenant-001"
        assert info.to_descriptor() == {
            "blobId": info.id,
            "filename": "front.jpg",
            "contentType": "image/jpeg",
            "size": 2048,
        }

    def test_put_assigns_unique_ids(self, blob_store):
        first = _put(blob_store)
        second = _put(blob_store)

        assert first.id != second.id

    def test_put_records_created_at(self, blob_store):
        info = _put(blob_store)

        assert "createdAt" in blob_store.info(OFFLINE_NAMESPACE, info.id).metadata

    def test_read_back_bytes(self, blob_store):
        info = _put(blob_store, b"\x89PNG-payload")

        assert blob_store.read_bytes(OFFLINE_NAMESPACE, info.id) == b"\x89PNG-payload"

    def test_default_content_type(self, blob_store):
        info = blob_store.put(OFFLINE_NAMESPACE, io.BytesIO(b"abc"), {"tenantId": "t"})

        assert info.content_type == "application/octet-stream"

    def test_size_cap_rejects_and_leaves_nothing_behind(self, tmp_path):
        store = FilesystemBlobStore(str(tmp_path), max_bytes=10)

        with pytest.raises(BlobTooLargeError):
            store.put(OFFLINE_NAMESPACE, io.BytesIO(b"x" * 11), {"tenantId": "t"})

        leftovers = os.listdir(tmp_path / OFFLINE_NAMESPACE)
        assert leftovers == []

    def test_too_large_is_a_storage_error(self):
        assert issubclass(BlobTooLargeError, BlobStorageError)

    def test_invalid_namespace_rejected(self, blob_store):
        with pytest.raises(BlobStorageError):
            blob_store.put("../escape", io.BytesIO(b"x"), {})


class TestReadAndInfo:
    """Tests for info/open/exists."""

    def test_info_unknown_blob(self, blob_store):
        with pytest.raises(BlobNotFoundError):
            blob_store.info(OFFLINE_NAMESPACE, "0" * 32)

    def test_path_traversal_id_is_not_found(self, blob_store):
        with pytest.raises(BlobNotFoundError):
            blob_store.info(OFFLINE_NAMESPACE, "../../etc/passwd")

    def test_not_found_is_a_lookup_error(self):
        assert issubclass(BlobNotFoundError, LookupError)

    def test_exists(self, blob_store):
        info = _put(blob_store)

        assert blob_store.exists(OFFLINE_NAMESPACE, info.id) is True
        assert blob_store.exists(OFFLINE_NAMESPACE, "f" * 32) is False

    def test_blob_is_scoped_to_namespace(self, blob_store):
        info = _put(blob_store)

        assert blob_store.exists(DOCUMENTS_NAMESPACE, info.id) is False

    def test_open_streams_content(self, blob_store):
        info = _put(blob_store, b"streamed")

        reader, opened = blob_store.open(OFFLINE_NAMESPACE, info.id)
        with reader:
            assert reader.read() == b"streamed"
        assert opened.id == info.id


class TestCopy:
    """Tests for server-side copy between namespaces."""

    def test_copy_creates_new_object(self, blob_store):
        source = _put(blob_store, b"face")

        copied = blob_store.copy(
            OFFLINE_NAMESPACE, source.id, BIOMETRICS_NAMESPACE, {"kind": "biometric-photo"}
        )

        assert copied.id != source.id
        assert copied.namespace == BIOMETRICS_NAMESPACE
        assert copied.size == 4
        assert blob_store.read_bytes(BIOMETRICS_NAMESPACE, copied.id) == b"face"

    def test_copy_leaves_source_untouched(self, blob_store):
        source = _put(blob_store, b"face")

        blob_store.copy(OFFLINE_NAMESPACE, source.id, BIOMETRICS_NAMESPACE)

        assert blob_store.read_bytes(OFFLINE_NAMESPACE, source.id) == b"face"
        assert blob_store.info(OFFLINE_NAMESPACE, source.id).metadata.get("copiedFrom") is None

    def test_copy_merges_metadata_and_records_provenance(self, blob_store):
        source = _put(blob_store, b"doc")

        copied = blob_store.copy(
            OFFLINE_NAMESPACE, source.id, DOCUMENTS_NAMESPACE, {"kind": "document", "projectId": "p1"}
        )

        assert copied.metadata["tenantId"] == "tenant-001"
        assert copied.metadata["originalFilename"] == "front.jpg"
        assert copied.metadata["kind"] == "document"
        assert copied.metadata["projectId"] == "p1"
        assert copied.metadata["copiedFrom"] == f"{OFFLINE_NAMESPACE}/{source.id}"

    def test_copy_missing_source(self, blob_store):
        with pytest.raises(BlobNotFoundError):
            blob_store.copy(OFFLINE_NAMESPACE, "a" * 32, BIOMETRICS_NAMESPACE)


class TestDelete:
    """Tests for removing objects that nothing refers to."""

    def test_delete_removes_data_and_metadata(self, blob_store):
        info = _put(blob_store)

        assert blob_store.delete(OFFLINE_NAMESPACE, info.id) is True

        assert not blob_store.exists(OFFLINE_NAMESPACE, info.id)
        assert os.listdir(os.path.join(blob_store.root, OFFLINE_NAMESPACE)) == []

    def test_delete_missing_returns_false(self, blob_store):
        assert blob_store.delete(OFFLINE_NAMESPACE, "a" * 32) is False

    def test_discard_skips_missing_ids(self, blob_store):
        kept = _put(blob_store, b"kept")
        dropped = _put(blob_store, b"dropped")

        blob_store.discard(OFFLINE_NAMESPACE, ["b" * 32, dropped.id])

        assert not blob_store.exists(OFFLINE_NAMESPACE, dropped.id)
        assert blob_store.read_bytes(OFFLINE_NAMESPACE, kept.id) == b"kept"

    def test_discard_logs_instead_of_raising(self, blob_store, monkeypatch):
        def failing_delete(namespace, blob_id):
            raise BlobStorageError("disk gone")

        monkeypatch.setattr(blob_store, "delete", failing_delete)

        blob_store.discard(OFFLINE_NAMESPACE, ["c" * 32])


class TestBlobStoreSingleton:
    """Tests for singleton pattern."""

    def test_get_blob_store_returns_same_instance(self, tmp_path, monkeypatch):
        import app.services.blob_store as module
        monkeypatch.setattr(module, "_blob_store", None)
        monkeypatch.setattr(module.settings, "BLOB_STORAGE_DIR", str(tmp_path))

        store1 = get_blob_store()
        store2 = get_blob_store()

        assert store1 is store2
        assert store1.root == str(tmp_path)
