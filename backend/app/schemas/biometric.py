"""Pydantic schemas for biometric enrollment review, status and identification"""
import json
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, field_validator

from app.schemas.offline_event import CamelModel, FileDescriptor


class BiometricRequestResponse(CamelModel):
    """Enrollment request as shown to reviewers."""
    id: str
    source_event_id: str
    offline_event_id: Optional[str] = None
    target_user_id: str
    performed_by_user_id: Optional[str] = None
    group_id: Optional[str] = None
    uploaded_files: List[FileDescriptor] = Field(default_factory=list)
    status: Literal["pending", "approved", "rejected"]
    notes: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("uploaded_files", mode="before")
    @classmethod
    def parse_uploaded_files(cls, v):
        """The ORM column stores the descriptors as a JSON string."""
        if isinstance(v, str):
            return json.loads(v or "[]")
        return v


class BiometricRequestListResponse(CamelModel):
    requests: List[BiometricRequestResponse]
    count: int


class RejectRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the capture was rejected")


class ReviewResponse(CamelModel):
    """Approve/reject outcome. alreadyProcessed marks an idempotent repeat."""
    ok: bool = True
    id: str
    status: str
    already_processed: bool = False
    enrollment_id: Optional[str] = None


class EnrollmentStatusResponse(CamelModel):
    user_id: str
    status: str = Field(..., description="not-enrolled, pending, enrolled, rejected, revoked or expired")
    template_version: Optional[str] = None
    photo_count: int = 0
    approved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RevokeRequest(CamelModel):
    reason: Optional[str] = Field(None, max_length=500)


class RevokeResponse(CamelModel):
    ok: bool = True
    user_id: str
    revoked: bool
    status: str


class IdentifyResponse(CamelModel):
    matched_user_id: Optional[str] = None
    score: Optional[float] = None
    reason: Literal["no_enrolled_users", "no_match", "matched"]
