"""
Biometric Enrollment Workflow Service

Owns the EnrollmentRequest lifecycle and the EnrollmentRecord it feeds:

    biometric-enroll event --> request (pending)
    request --approve--> approved  + record upserted as pending (no template)
    request --reject---> rejected  (no record side effect)
    record  --template worker--> enrolled
    record  --revoke--> revoked    (template dropped)

Idempotency:
    - Requests are upserted by (tenant_id, source_event_id); a replayed
      capture refreshes a pending request and never touches a terminal one.
    - approve/reject on a terminal request report the existing status
      instead of failing. The transition itself is a conditional UPDATE
      (status == 'pending'), so two concurrent approvals yield one record.

Every query includes tenant_id.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.metrics import record_biometric_request
from app.models.biometric_enrollment import BiometricEnrollment, EnrollmentStatus
from app.models.biometric_enrollment_request import (
    BiometricEnrollmentRequest,
    EnrollmentRequestStatus,
)
from app.models.user import User
from app.services.blob_store import (
    BIOMETRICS_NAMESPACE,
    OFFLINE_NAMESPACE,
    BlobStore,
    get_blob_store,
)
from app.services.domain_mutators import (
    EntityNotFoundError,
    InvalidEventPayloadError,
    find_user,
)

logger = logging.getLogger(__name__)

REQUEST_STATUS_FILTERS = ("pending", "approved", "rejected", "all")
ACTIVE_RECORD_STATUSES = (EnrollmentStatus.PENDING.value, EnrollmentStatus.ENROLLED.value)


@dataclass
class ReviewResult:
    """Outcome of approve/reject."""

    request: BiometricEnrollmentRequest
    already_processed: bool
    enrollment: Optional[BiometricEnrollment] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def refresh_biometric_summary(
    db: Session,
    tenant_id: str,
    user_id: str,
    record: Optional[BiometricEnrollment] = None,
    profile_photo_blob_id: Optional[str] = None,
) -> Optional[User]:
    """
    Copy the record's state onto the user's denormalized biometric summary.

    The summary is a cache; a missing user is logged and ignored. Does not
    commit.
    """
    user = db.query(User).filter(User.tenant_id == tenant_id, User.id == user_id).first()
    if user is None:
        logger.warning(
            f"Cannot refresh biometric summary: user {user_id} not found",
            extra={"event_type": "biometric_summary_user_missing", "user_id": user_id},
        )
        return None

    if record is None:
        record = (
            db.query(BiometricEnrollment)
            .filter(BiometricEnrollment.tenant_id == tenant_id, BiometricEnrollment.user_id == user_id)
            .first()
        )

    user.biometric_status = record.status if record else "not-enrolled"
    user.biometric_template_version = (
        record.template_version if record and record.status == EnrollmentStatus.ENROLLED.value else None
    )
    user.biometric_last_updated_at = _utcnow()
    if profile_photo_blob_id:
        user.profile_photo_blob_id = profile_photo_blob_id
    db.flush()
    return user


class BiometricEnrollmentService:
    """
    Enrollment request review and enrollment record management.

    Attributes:
        blob_store: Store used to promote captured photos into the
            durable biometrics namespace on approval
    """

    def __init__(self, blob_store: Optional[BlobStore] = None):
        self._blob_store = blob_store

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store or get_blob_store()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def upsert_request(
        self,
        db: Session,
        tenant_id: str,
        source_event_id: str,
        target_user_id: str,
        files: list[dict],
        performed_by_user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        offline_event_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[BiometricEnrollmentRequest, str]:
        """
        Create or refresh the request for (tenant_id, source_event_id).

        Returns:
            (request, action) where action is "created", "updated" or
            "unchanged" (request already approved/rejected)

        Raises:
            InvalidEventPayloadError: No target user or no photos
            EntityNotFoundError: Target user not in tenant
        """
        if not source_event_id:
            raise InvalidEventPayloadError("source event id is required")
        if not target_user_id:
            raise InvalidEventPayloadError("targetUserId is required")
        photos = [f for f in files or [] if f.get("blobId")]
        if not photos:
            raise InvalidEventPayloadError("biometric-enroll requires at least one photo")
        find_user(db, tenant_id, target_user_id)

        fields = {
            "target_user_id": target_user_id,
            "performed_by_user_id": performed_by_user_id,
            "group_id": group_id or None,
            "uploaded_files": json.dumps(photos),
            "offline_event_id": offline_event_id,
            "notes": notes,
        }

        request = self._find_by_source(db, tenant_id, source_event_id)
        if request is None:
            request = BiometricEnrollmentRequest(
                tenant_id=tenant_id,
                source_event_id=source_event_id,
                status=EnrollmentRequestStatus.PENDING.value,
                **fields,
            )
            db.add(request)
            try:
                db.commit()
            except IntegrityError:
                # Lost an insert race for the same key; fall through to update
                db.rollback()
                request = self._find_by_source(db, tenant_id, source_event_id)
            else:
                db.refresh(request)
                record_biometric_request("created")
                logger.info(
                    "Biometric enrollment request created",
                    extra={
                        "event_type": "biometric_request_created",
                        "request_id": request.id,
                        "source_event_id": source_event_id,
                        "target_user_id": target_user_id,
                        "photo_count": len(photos),
                    },
                )
                return request, "created"

        if request.is_terminal:
            logger.info(
                f"Replayed capture for {request.status} request left unchanged",
                extra={
                    "event_type": "biometric_request_replay_terminal",
                    "request_id": request.id,
                    "status": request.status,
                },
            )
            return request, "unchanged"

        for key, value in fields.items():
            setattr(request, key, value)
        request.updated_at = _utcnow()
        db.commit()
        db.refresh(request)
        record_biometric_request("updated")
        logger.info(
            "Biometric enrollment request refreshed by replay",
            extra={
                "event_type": "biometric_request_updated",
                "request_id": request.id,
                "source_event_id": source_event_id,
                "photo_count": len(photos),
            },
        )
        return request, "updated"

    @staticmethod
    def _find_by_source(db: Session, tenant_id: str, source_event_id: str) -> Optional[BiometricEnrollmentRequest]:
        return (
            db.query(BiometricEnrollmentRequest)
            .filter(
                BiometricEnrollmentRequest.tenant_id == tenant_id,
                BiometricEnrollmentRequest.source_event_id == source_event_id,
            )
            .first()
        )

    def get_request(self, db: Session, tenant_id: str, request_id: str) -> BiometricEnrollmentRequest:
        request = (
            db.query(BiometricEnrollmentRequest)
            .filter(
                BiometricEnrollmentRequest.tenant_id == tenant_id,
                BiometricEnrollmentRequest.id == request_id,
            )
            .first()
        )
        if request is None:
            raise EntityNotFoundError("BiometricEnrollmentRequest", request_id)
        return request

    def list_requests(
        self,
        db: Session,
        tenant_id: str,
        status: Optional[str] = "pending",
        target_user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[BiometricEnrollmentRequest]:
        """
        List requests newest first.

        Args:
            status: pending (default), approved, rejected or all
            target_user_id: Optional filter
            limit: Clamped to [1, BIOMETRIC_REQUEST_LIST_LIMIT]

        Raises:
            ValueError: Unknown status filter
        """
        status = (status or "pending").strip().lower()
        if status not in REQUEST_STATUS_FILTERS:
            raise ValueError(f"status must be one of {', '.join(REQUEST_STATUS_FILTERS)}")

        max_limit = settings.BIOMETRIC_REQUEST_LIST_LIMIT
        limit = max_limit if limit is None else max(1, min(int(limit), max_limit))

        query = db.query(BiometricEnrollmentRequest).filter(
            BiometricEnrollmentRequest.tenant_id == tenant_id
        )
        if status != "all":
            query = query.filter(BiometricEnrollmentRequest.status == status)
        if target_user_id:
            query = query.filter(BiometricEnrollmentRequest.target_user_id == target_user_id)

        return (
            query.order_by(BiometricEnrollmentRequest.created_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def _transition(
        self,
        db: Session,
        tenant_id: str,
        request_id: str,
        values: dict,
    ) -> bool:
        """Conditional pending -> terminal update. Returns False if someone else won."""
        values["updated_at"] = _utcnow()
        updated = (
            db.query(BiometricEnrollmentRequest)
            .filter(
                BiometricEnrollmentRequest.tenant_id == tenant_id,
                BiometricEnrollmentRequest.id == request_id,
                BiometricEnrollmentRequest.status == EnrollmentRequestStatus.PENDING.value,
            )
            .update(values, synchronize_session=False)
        )
        return updated == 1

    def _already_processed(self, db: Session, request: BiometricEnrollmentRequest, action: str) -> ReviewResult:
        db.refresh(request)
        logger.info(
            f"Biometric request already {request.status}; {action} is a no-op",
            extra={
                "event_type": "biometric_request_already_processed",
                "request_id": request.id,
                "status": request.status,
                "action": action,
            },
        )
        return ReviewResult(request=request, already_processed=True)

    def _upsert_pending_record(
        self,
        db: Session,
        tenant_id: str,
        request: BiometricEnrollmentRequest,
        actor_id: str,
        photo_ids: list,
        now: datetime,
    ) -> BiometricEnrollment:
        """Point the user's record at the approved photos and reset it to pending (no template)."""
        record = (
            db.query(BiometricEnrollment)
            .filter(
                BiometricEnrollment.tenant_id == tenant_id,
                BiometricEnrollment.user_id == request.target_user_id,
            )
            .first()
        )
        if record is None:
            record = BiometricEnrollment(tenant_id=tenant_id, user_id=request.target_user_id)
            db.add(record)

        record.status = EnrollmentStatus.PENDING.value
        record.template = None
        record.template_version = None
        record.photo_refs = json.dumps(photo_ids)
        record.source_request_id = request.id
        record.approved_by = actor_id
        record.approved_at = now
        record.revoked_by = None
        record.revoked_at = None
        record.revoke_reason = None
        record.updated_at = now
        db.flush()
        return record

    def approve(
        self,
        db: Session,
        tenant_id: str,
        request_id: str,
        actor_id: str,
        blob_store: Optional[BlobStore] = None,
    ) -> ReviewResult:
        """
        Approve a pending request.

        Photos are copied into the biometrics namespace before the state
        change so a storage failure leaves the request pending; copies made
        by an approval that does not complete are removed again. The request
        transition, record upsert and summary refresh commit together.

        Raises:
            EntityNotFoundError: Unknown request
            BlobNotFoundError / BlobStorageError: Photo copy failed
        """
        request = self.get_request(db, tenant_id, request_id)
        if request.is_terminal:
            return self._already_processed(db, request, "approve")

        store = blob_store or self.blob_store
        photo_ids = []
        try:
            for descriptor in request.files:
                copied = store.copy(
                    OFFLINE_NAMESPACE,
                    descriptor["blobId"],
                    BIOMETRICS_NAMESPACE,
                    {
                        "tenantId": tenant_id,
                        "kind": "biometric-photo",
                        "userId": request.target_user_id,
                        "sourceRequestId": request.id,
                    },
                )
                photo_ids.append(copied.id)

            now = _utcnow()
            if not self._transition(db, tenant_id, request.id, {
                "status": EnrollmentRequestStatus.APPROVED.value,
                "approved_by": actor_id,
                "approved_at": now,
            }):
                db.rollback()
                store.discard(BIOMETRICS_NAMESPACE, photo_ids)
                return self._already_processed(db, request, "approve")

            record = self._upsert_pending_record(db, tenant_id, request, actor_id, photo_ids, now)
            refresh_biometric_summary(
                db,
                tenant_id,
                request.target_user_id,
                record=record,
                profile_photo_blob_id=photo_ids[0] if photo_ids else None,
            )
            db.commit()
        except Exception:
            db.rollback()
            # Copies made for an approval that did not happen are unreferenced
            store.discard(BIOMETRICS_NAMESPACE, photo_ids)
            raise

        db.refresh(request)
        db.refresh(record)

        record_biometric_request("approved")
        logger.info(
            "Biometric enrollment request approved",
            extra={
                "event_type": "biometric_request_approved",
                "request_id": request.id,
                "enrollment_id": record.id,
                "target_user_id": request.target_user_id,
                "approved_by": actor_id,
                "photo_count": len(photo_ids),
            },
        )
        return ReviewResult(request=request, already_processed=False, enrollment=record)

    def reject(
        self,
        db: Session,
        tenant_id: str,
        request_id: str,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> ReviewResult:
        """Reject a pending request. No enrollment record is touched."""
        request = self.get_request(db, tenant_id, request_id)
        if request.is_terminal:
            return self._already_processed(db, request, "reject")

        reason = (reason or "").strip() or None
        if not self._transition(db, tenant_id, request.id, {
            "status": EnrollmentRequestStatus.REJECTED.value,
            "rejected_by": actor_id,
            "rejected_at": _utcnow(),
            "reject_reason": reason,
        }):
            db.rollback()
            return self._already_processed(db, request, "reject")

        db.commit()
        db.refresh(request)

        record_biometric_request("rejected")
        logger.info(
            "Biometric enrollment request rejected",
            extra={
                "event_type": "biometric_request_rejected",
                "request_id": request.id,
                "target_user_id": request.target_user_id,
                "rejected_by": actor_id,
                "reason": reason,
            },
        )
        return ReviewResult(request=request, already_processed=False)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def revoke(
        self,
        db: Session,
        tenant_id: str,
        user_id: str,
        actor_id: str,
        reason: Optional[str] = None,
    ) -> Optional[BiometricEnrollment]:
        """
        Revoke the user's pending or enrolled record and drop its template.

        Returns:
            The revoked record, or None when the user had no active record

        Raises:
            EntityNotFoundError: Unknown user
        """
        find_user(db, tenant_id, user_id)
        now = _utcnow()
        updated = (
            db.query(BiometricEnrollment)
            .filter(
                BiometricEnrollment.tenant_id == tenant_id,
                BiometricEnrollment.user_id == user_id,
                BiometricEnrollment.status.in_(ACTIVE_RECORD_STATUSES),
            )
            .update(
                {
                    "status": EnrollmentStatus.REVOKED.value,
                    "template": None,
                    "template_version": None,
                    "revoked_by": actor_id,
                    "revoked_at": now,
                    "revoke_reason": (reason or "").strip() or None,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            db.rollback()
            logger.info(
                "No active biometric enrollment to revoke",
                extra={"event_type": "biometric_revoke_noop", "user_id": user_id},
            )
            return None

        record = self.get_record(db, tenant_id, user_id)
        db.refresh(record)
        refresh_biometric_summary(db, tenant_id, user_id, record=record)
        db.commit()
        db.refresh(record)

        record_biometric_request("revoked")
        logger.info(
            "Biometric enrollment revoked",
            extra={
                "event_type": "biometric_enrollment_revoked",
                "enrollment_id": record.id,
                "user_id": user_id,
                "revoked_by": actor_id,
            },
        )
        return record

    def get_record(self, db: Session, tenant_id: str, user_id: str) -> Optional[BiometricEnrollment]:
        return (
            db.query(BiometricEnrollment)
            .filter(BiometricEnrollment.tenant_id == tenant_id, BiometricEnrollment.user_id == user_id)
            .first()
        )

    def get_status(self, db: Session, tenant_id: str, user_id: str) -> dict:
        """
        Enrollment summary for polling clients.

        Raises:
            EntityNotFoundError: Unknown user
        """
        find_user(db, tenant_id, user_id)
        record = self.get_record(db, tenant_id, user_id)
        if record is None:
            return {
                "user_id": user_id,
                "status": "not-enrolled",
                "template_version": None,
                "photo_count": 0,
                "approved_at": None,
                "updated_at": None,
            }
        return {
            "user_id": user_id,
            "status": record.status,
            "template_version": record.template_version,
            "photo_count": len(record.photo_ids),
            "approved_at": record.approved_at,
            "updated_at": record.updated_at,
        }


# Global singleton instance
_biometric_enrollment_service: Optional[BiometricEnrollmentService] = None


def get_biometric_enrollment_service() -> BiometricEnrollmentService:
    """
    Get the global BiometricEnrollmentService instance.

    Creates the instance on first call (lazy initialization).
    """
    global _biometric_enrollment_service

    if _biometric_enrollment_service is None:
        _biometric_enrollment_service = BiometricEnrollmentService()
        logger.info(
            "Global BiometricEnrollmentService instance created",
            extra={"event_type": "biometric_enrollment_service_singleton_created"},
        )

    return _biometric_enrollment_service
