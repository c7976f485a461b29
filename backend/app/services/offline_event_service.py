"""
Offline Event Ingestion Service

Records events replayed by mobile clients and hands them to the dispatcher.

Flow (all inside the HTTP request):
    1. Stream each attached file into the mobileOffline blob namespace,
       tagged with the submitting tenant and user
    2. Append one OfflineEvent row carrying the file descriptors and commit
    3. Dispatch to the event type's handler; handler problems are logged
       and reported, never raised

Once step 2 commits the event is acknowledged, whatever the handlers do.
Duplicates are never rejected: replay is expected.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import record_offline_event
from app.models.offline_event import OfflineEvent
from app.services.biometric_enrollment_service import BiometricEnrollmentService
from app.services.blob_store import (
    OFFLINE_NAMESPACE,
    BlobInfo,
    BlobNotFoundError,
    BlobStore,
    get_blob_store,
)
from app.services.domain_mutators import InvalidEventPayloadError
from app.services.offline_event_handlers import DispatchResult, OfflineEventType, dispatch_event

logger = logging.getLogger(__name__)


@dataclass
class IncomingFile:
    """One uploaded file, not yet stored."""

    filename: Optional[str]
    content_type: Optional[str]
    stream: BinaryIO


@dataclass
class IngestResult:
    event: OfflineEvent
    dispatch: DispatchResult
    files: list[dict] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.event.id

    @property
    def uploaded_files_count(self) -> int:
        return len(self.files)


class OfflineEventService:
    """
    Ingest offline events and serve their transient files.

    Attributes:
        blob_store: Defaults to the global store
        enrollment_service: Passed through to the dispatcher
    """

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        enrollment_service: Optional[BiometricEnrollmentService] = None,
    ):
        self._blob_store = blob_store
        self._enrollment_service = enrollment_service

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store or get_blob_store()

    def ingest(
        self,
        db: Session,
        tenant_id: str,
        user_id: Optional[str],
        event_type: str,
        payload: Optional[dict] = None,
        files: Optional[list[IncomingFile]] = None,
        entity_ref: Optional[str] = None,
        client_event_id: Optional[str] = None,
        client_timestamp: Optional[str] = None,
        blob_store: Optional[BlobStore] = None,
    ) -> IngestResult:
        """
        Store files, record the event, dispatch it.

        Raises:
            InvalidEventPayloadError: Missing tenant/event type, payload not an
                object, or too many files
            BlobStorageError: A file could not be stored; files already stored
                for this event are discarded and no event is recorded
        """
        if not tenant_id:
            raise InvalidEventPayloadError("tenant is required")
        event_type = (event_type or "").strip()
        if not event_type:
            raise InvalidEventPayloadError("eventType is required")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidEventPayloadError("payload must be an object")
        files = files or []
        if len(files) > settings.MAX_UPLOAD_FILES:
            raise InvalidEventPayloadError(
                f"at most {settings.MAX_UPLOAD_FILES} files may be attached to one event"
            )

        store = blob_store or self.blob_store
        descriptors = []
        try:
            for upload in files:
                info = store.put(
                    OFFLINE_NAMESPACE,
                    upload.stream,
                    {
                        "tenantId": tenant_id,
                        "uploaderId": user_id,
                        "originalFilename": upload.filename,
                        "contentType": upload.content_type or "application/octet-stream",
                        "kind": "offline-upload",
                        "eventType": event_type,
                    },
                )
                descriptors.append(info.to_descriptor())

            event = OfflineEvent(
                tenant_id=tenant_id,
                user_id=user_id,
                event_type=event_type,
                entity_ref=(entity_ref or "").strip() or None,
                client_event_id=(client_event_id or "").strip() or None,
                payload=json.dumps(payload),
                uploaded_files=json.dumps(descriptors),
                client_timestamp=client_timestamp,
            )
            db.add(event)
            db.commit()
        except Exception:
            db.rollback()
            # Files stored before the failure belong to no event
            store.discard(OFFLINE_NAMESPACE, [d["blobId"] for d in descriptors])
            raise
        db.refresh(event)

        parsed_type = OfflineEventType.parse(event_type)
        record_offline_event(parsed_type.value if parsed_type else "unknown")
        logger.info(
            f"Offline event recorded: {event_type}",
            extra={
                "event_type": "offline_event_recorded",
                "offline_event_id": event.id,
                "offline_event_type": event_type,
                "client_event_id": event.client_event_id,
                "file_count": len(descriptors),
            },
        )

        dispatch = dispatch_event(
            db,
            event,
            blob_store=store,
            enrollment_service=self._enrollment_service,
        )
        return IngestResult(event=event, dispatch=dispatch, files=descriptors)

    def open_offline_file(
        self,
        tenant_id: str,
        blob_id: str,
        blob_store: Optional[BlobStore] = None,
    ) -> tuple[BinaryIO, BlobInfo]:
        """
        Open a transient upload for streaming.

        A blob tagged with another tenant is reported as not found.
        """
        info = self.stat_offline_file(tenant_id, blob_id, blob_store)
        reader, _ = (blob_store or self.blob_store).open(OFFLINE_NAMESPACE, blob_id)
        return reader, info

    def stat_offline_file(
        self,
        tenant_id: str,
        blob_id: str,
        blob_store: Optional[BlobStore] = None,
    ) -> BlobInfo:
        info = (blob_store or self.blob_store).info(OFFLINE_NAMESPACE, blob_id)
        if info.tenant_id != tenant_id:
            logger.warning(
                "Cross-tenant offline file access denied",
                extra={"event_type": "offline_file_tenant_mismatch", "blob_id": blob_id},
            )
            raise BlobNotFoundError(f"Blob {blob_id} not found in {OFFLINE_NAMESPACE}")
        return info


# Global singleton instance
_offline_event_service: Optional[OfflineEventService] = None


def get_offline_event_service() -> OfflineEventService:
    """
    Get the global OfflineEventService instance.

    Creates the instance on first call (lazy initialization).
    """
    global _offline_event_service

    if _offline_event_service is None:
        _offline_event_service = OfflineEventService()
        logger.info(
            "Global OfflineEventService instance created",
            extra={"event_type": "offline_event_service_singleton_created"},
        )

    return _offline_event_service
