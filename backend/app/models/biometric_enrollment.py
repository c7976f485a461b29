"""BiometricEnrollment SQLAlchemy ORM model

The durable biometric record for a user: one row per (tenant_id, user_id).

Invariant:
    template is present if and only if status == "enrolled". The template
    column is deferred so bulk reads never load it; only the identification
    matcher asks for it explicitly.

Privacy:
    Templates are derived data only; raw photos stay in the blob store and
    are referenced by id.
"""
import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, LargeBinary, String, Text, UniqueConstraint
from sqlalchemy.orm import deferred

from app.core.database import Base


class EnrollmentStatus(str, enum.Enum):
    PENDING = "pending"
    ENROLLED = "enrolled"
    REJECTED = "rejected"
    REVOKED = "revoked"
    EXPIRED = "expired"


def _utcnow():
    return datetime.now(timezone.utc)


class BiometricEnrollment(Base):
    """
    Biometric enrollment record.

    Attributes:
        photo_refs: JSON array of blob ids in the biometrics namespace
        source_request_id: Request whose approval created/refreshed this record
        template_version: Version tag of the template generator
        template: Opaque little-endian float32 vector (deferred)
    """

    __tablename__ = "biometric_enrollments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    user_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False, default=EnrollmentStatus.PENDING.value)
    template_version = Column(String(50), nullable=True)
    template = deferred(Column(LargeBinary, nullable=True))
    photo_refs = Column(Text, nullable=False, default="[]")
    source_request_id = Column(String(36), nullable=True, index=True)

    approved_by = Column(String(36), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(36), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoke_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_biometric_enrollments_tenant_user"),
        Index("idx_biometric_enrollments_status_updated", "status", "updated_at"),
    )

    @property
    def photo_ids(self) -> list[str]:
        return json.loads(self.photo_refs or "[]")

    def __repr__(self):
        return (
            f"<BiometricEnrollment(id={self.id}, user_id={self.user_id}, "
            f"status={self.status}, template_version={self.template_version})>"
        )
