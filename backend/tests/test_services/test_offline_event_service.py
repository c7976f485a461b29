"""
Tests for OfflineEventService ingestion and transient file access
"""
import io
import json
import os

import pytest

from app.models.offline_event import OfflineEvent
from app.models.task import TaskAttachment
from app.services.biometric_enrollment_service import BiometricEnrollmentService
from app.services.blob_store import (
    OFFLINE_NAMESPACE,
    BlobNotFoundError,
    BlobStorageError,
    BlobTooLargeError,
    FilesystemBlobStore,
)
from app.services.domain_mutators import InvalidEventPayloadError
from app.services.offline_event_service import (
    IncomingFile,
    OfflineEventService,
    get_offline_event_service,
)
from tests.conftest import TENANT_ID, OTHER_TENANT_ID


@pytest.fixture
def service(blob_store):
    return OfflineEventService(
        blob_store=blob_store,
        enrollment_service=BiometricEnrollmentService(blob_store=blob_store),
    )


def _file(data: bytes, name: str = "site.jpg") -> IncomingFile:
    return IncomingFile(filename=name, content_type="image/jpeg", stream=io.BytesIO(data))


class TestIngest:
    """Tests for recording events."""

    def test_records_event_and_files(self, db_session, service, blob_store, sample_task, worker_user):
        result = service.ingest(
            db_session,
            TENANT_ID,
            worker_user.id,
            "activity-log",
            payload={"taskId": sample_task.id, "note": "Cable pulled"},
            files=[_file(b"one"), _file(b"two", "second.jpg")],
            client_event_id="evt-42",
            client_timestamp="2026-01-12T10:30:00Z",
        )

        assert result.uploaded_files_count == 2
        assert result.dispatch.outcome == "applied"

        event = db_session.query(OfflineEvent).filter_by(id=result.id).one()
        assert event.tenant_id == TENANT_ID
        assert event.user_id == worker_user.id
        assert event.client_event_id == "evt-42"
        assert event.client_timestamp == "2026-01-12T10:30:00Z"
        assert event.payload_dict == {"taskId": sample_task.id, "note": "Cable pulled"}
        assert [f["filename"] for f in event.files] == ["site.jpg", "second.jpg"]

        stored = blob_store.info(OFFLINE_NAMESPACE, event.files[0]["blobId"])
        assert stored.tenant_id == TENANT_ID
        assert stored.metadata["uploaderId"] == worker_user.id
        assert stored.metadata["kind"] == "offline-upload"
        assert db_session.query(TaskAttachment).count() == 2

    def test_unknown_type_still_recorded(self, db_session, service):
        result = service.ingest(db_session, TENANT_ID, None, "chat-message", payload={"text": "hi"})

        assert result.dispatch.outcome == "unhandled"
        assert db_session.query(OfflineEvent).count() == 1

    def test_duplicates_are_recorded(self, db_session, service):
        for _ in range(2):
            service.ingest(db_session, TENANT_ID, None, "chat-message", client_event_id="same")

        assert db_session.query(OfflineEvent).filter_by(client_event_id="same").count() == 2

    def test_handler_failure_does_not_fail_ingest(self, db_session, service):
        result = service.ingest(db_session, TENANT_ID, None, "task-update", payload={"taskId": "missing"})

        assert result.dispatch.outcome == "skipped"
        assert db_session.query(OfflineEvent).filter_by(id=result.id).count() == 1

    def test_blank_strings_stored_as_none(self, db_session, service):
        result = service.ingest(
            db_session, TENANT_ID, None, "chat-message", entity_ref="  ", client_event_id=""
        )

        assert result.event.entity_ref is None
        assert result.event.client_event_id is None

    @pytest.mark.parametrize("kwargs,message", [
        ({"tenant_id": "", "event_type": "task-update"}, "tenant is required"),
        ({"tenant_id": TENANT_ID, "event_type": "  "}, "eventType is required"),
        ({"tenant_id": TENANT_ID, "event_type": "task-update", "payload": ["not", "a", "dict"]}, "payload must be an object"),
    ])
    def test_invalid_input(self, db_session, service, kwargs, message):
        with pytest.raises(InvalidEventPayloadError, match=message):
            service.ingest(db_session, user_id=None, **kwargs)

        assert db_session.query(OfflineEvent).count() == 0

    def test_too_many_files(self, db_session, service, monkeypatch):
        import app.services.offline_event_service as module
        monkeypatch.setattr(module.settings, "MAX_UPLOAD_FILES", 1)

        with pytest.raises(InvalidEventPayloadError):
            service.ingest(db_session, TENANT_ID, None, "activity-log", files=[_file(b"a"), _file(b"b")])

    def test_oversized_file_records_nothing(self, db_session, tmp_path):
        small_store = FilesystemBlobStore(str(tmp_path / "small"), max_bytes=4)
        service = OfflineEventService(blob_store=small_store)

        with pytest.raises(BlobTooLargeError):
            service.ingest(db_session, TENANT_ID, None, "activity-log", files=[_file(b"too large")])

        assert db_session.query(OfflineEvent).count() == 0

    def test_failed_file_discards_files_already_stored(self, db_session, service, blob_store):
        class BrokenStream:
            def read(self, size=-1):
                raise OSError("connection reset")

        broken = IncomingFile(filename="second.jpg", content_type="image/jpeg", stream=BrokenStream())

        with pytest.raises(BlobStorageError):
            service.ingest(db_session, TENANT_ID, None, "activity-log", files=[_file(b"first"), broken])

        assert db_session.query(OfflineEvent).count() == 0
        assert os.listdir(os.path.join(blob_store.root, OFFLINE_NAMESPACE)) == []

    def test_failed_commit_discards_stored_files(self, db_session, service, blob_store, monkeypatch):
        def failing_commit():
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(db_session, "commit", failing_commit)

        with pytest.raises(RuntimeError):
            service.ingest(db_session, TENANT_ID, None, "activity-log", files=[_file(b"a"), _file(b"b")])

        assert os.listdir(os.path.join(blob_store.root, OFFLINE_NAMESPACE)) == []


class TestOfflineFiles:
    """Tests for tenant-scoped transient file access."""

    def test_open_own_tenant_file(self, db_session, service):
        result = service.ingest(db_session, TENANT_ID, None, "chat-message", files=[_file(b"bytes")])
        blob_id = result.files[0]["blobId"]

        reader, info = service.open_offline_file(TENANT_ID, blob_id)
        with reader:
            assert reader.read() == b"bytes"
        assert info.content_type == "image/jpeg"

    def test_other_tenant_gets_not_found(self, db_session, service):
        result = service.ingest(db_session, TENANT_ID, None, "chat-message", files=[_file(b"bytes")])
        blob_id = result.files[0]["blobId"]

        with pytest.raises(BlobNotFoundError):
            service.stat_offline_file(OTHER_TENANT_ID, blob_id)

    def test_unknown_blob(self, service):
        with pytest.raises(BlobNotFoundError):
            service.open_offline_file(TENANT_ID, "0" * 32)


class TestOfflineEventServiceSingleton:

    def test_singleton(self, monkeypatch):
        import app.services.offline_event_service as module
        monkeypatch.setattr(module, "_offline_event_service", None)

        assert get_offline_event_service() is get_offline_event_service()


def test_payload_round_trips_as_json(db_session, service):
    payload = {"taskId": "t1", "nested": {"a": [1, 2]}, "unicode": "Überprüfung"}

    result = service.ingest(db_session, TENANT_ID, None, "chat-message", payload=payload)

    assert json.loads(result.event.payload) == payload
