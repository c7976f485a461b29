"""Pydantic schemas for request/response validation"""
from app.schemas.offline_event import (
    CamelModel,
    FileDescriptor,
    OfflineEventCreate,
    OfflineEventResponse,
)
from app.schemas.biometric import (
    BiometricRequestResponse,
    BiometricRequestListResponse,
    RejectRequest,
    ReviewResponse,
    EnrollmentStatusResponse,
    RevokeRequest,
    RevokeResponse,
    IdentifyResponse,
)

__all__ = [
    "CamelModel",
    "FileDescriptor",
    "OfflineEventCreate",
    "OfflineEventResponse",
    "BiometricRequestResponse",
    "BiometricRequestListResponse",
    "RejectRequest",
    "ReviewResponse",
    "EnrollmentStatusResponse",
    "RevokeRequest",
    "RevokeResponse",
    "IdentifyResponse",
]
