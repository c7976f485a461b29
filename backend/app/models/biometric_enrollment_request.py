"""BiometricEnrollmentRequest SQLAlchemy ORM model

One record per biometric capture submitted from a mobile device, reviewed by
an elevated user before it becomes an enrollment.

Lifecycle:
    pending --approve--> approved (terminal)
    pending --reject---> rejected (terminal)

Idempotency:
    (tenant_id, source_event_id) is unique. Replaying the same capture
    updates the existing request instead of creating another one.
"""
import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text, UniqueConstraint

from app.core.database import Base


class EnrollmentRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def _utcnow():
    return datetime.now(timezone.utc)


class BiometricEnrollmentRequest(Base):
    """
    Pending/approved/rejected biometric capture.

    Attributes:
        source_event_id: Idempotency key (client event id, or the offline event id)
        offline_event_id: Latest OfflineEvent that delivered this capture
        target_user_id: User being enrolled
        performed_by_user_id: Actor who captured the photos
        group_id: Optional crew/group context
        uploaded_files: JSON array of {blobId, filename, contentType, size}
            in the offline namespace
    """

    __tablename__ = "biometric_enrollment_requests"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    source_event_id = Column(String(100), nullable=False)
    offline_event_id = Column(String(36), nullable=True)
    target_user_id = Column(String(36), nullable=False, index=True)
    performed_by_user_id = Column(String(36), nullable=True)
    group_id = Column(String(36), nullable=True)
    uploaded_files = Column(Text, nullable=False, default="[]")
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=EnrollmentRequestStatus.PENDING.value)

    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    reject_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "source_event_id", name="uq_enrollment_requests_tenant_source_event"),
        Index("idx_enrollment_requests_tenant_status_created", "tenant_id", "status", "created_at"),
    )

    @property
    def files(self) -> list[dict]:
        return json.loads(self.uploaded_files or "[]")

    @property
    def is_terminal(self) -> bool:
        return self.status != EnrollmentRequestStatus.PENDING.value

    def __repr__(self):
        return (
            f"<BiometricEnrollmentRequest(id={self.id}, target_user_id={self.target_user_id}, "
            f"status={self.status})>"
        )
