"""User SQLAlchemy ORM model with the denormalized biometric summary"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, String, UniqueConstraint

from app.core.database import Base


class UserRole(str, enum.Enum):
    """Tenant roles supplied by the auth layer"""
    WORKER = "worker"
    SUPERVISOR = "supervisor"
    PROJECT_MANAGER = "project-manager"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


# Roles allowed to list, approve, reject and revoke biometric enrollments
ELEVATED_ROLES = (UserRole.MANAGER, UserRole.ADMIN, UserRole.SUPERADMIN)


class User(Base):
    """
    Tenant member.

    The biometric_* columns are a cache of the user's EnrollmentRecord,
    refreshed whenever that record changes; they are never authoritative.

    Attributes:
        id: UUID primary key
        tenant_id: Owning tenant
        username: Login name, unique within the tenant
        display_name: Human readable name for notes and audit fields
        role: UserRole
        is_active: Whether the account is enabled
        biometric_status: not-enrolled | pending | enrolled | rejected | revoked | expired
        biometric_template_version: Template version of the enrolled record
        biometric_last_updated_at: When the summary last changed (UTC)
        profile_photo_blob_id: Representative photo in the biometrics namespace
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    username = Column(String(100), nullable=False)
    display_name = Column(String(200), nullable=True)
    role = Column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        nullable=False,
        default=UserRole.WORKER,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    biometric_status = Column(String(20), nullable=False, default="not-enrolled")
    biometric_template_version = Column(String(50), nullable=True)
    biometric_last_updated_at = Column(DateTime(timezone=True), nullable=True)
    profile_photo_blob_id = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "username", name="uq_users_tenant_username"),
        Index("idx_users_tenant_biometric_status", "tenant_id", "biometric_status"),
    )

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, tenant_id={self.tenant_id}, username={self.username}, role={self.role})>"
