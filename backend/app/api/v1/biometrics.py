"""
Biometric Enrollment API

Endpoints (mounted under /mobile):
- GET  /biometric-requests - List enrollment requests (elevated)
- POST /biometric-requests/{request_id}/approve - Approve a pending request (elevated)
- POST /biometric-requests/{request_id}/reject - Reject a pending request (elevated)
- GET  /biometric-enrollment-status/{user_id} - Enrollment summary for polling clients
- POST /biometric-identify - Identify the person in a query photo

Endpoints (mounted under /users):
- POST /users/{user_id}/biometric/revoke - Revoke a user's enrollment (elevated)

Approve and reject are safe to retry: repeating them on a request that is
no longer pending returns 200 with alreadyProcessed=true.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.v1.auth import get_current_user
from app.core.config import settings
from app.core.database import get_db
from app.core.permissions import require_elevated
from app.models.user import User
from app.schemas.biometric import (
    BiometricRequestListResponse,
    BiometricRequestResponse,
    EnrollmentStatusResponse,
    IdentifyResponse,
    RejectRequest,
    ReviewResponse,
    RevokeRequest,
    RevokeResponse,
)
from app.services.biometric_enrollment_service import ReviewResult, get_biometric_enrollment_service
from app.services.blob_store import BlobNotFoundError, BlobStorageError, BlobStore, get_blob_store
from app.services.domain_mutators import EntityNotFoundError, InvalidEventPayloadError
from app.services.identification_service import get_identification_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Biometrics"])
users_router = APIRouter(prefix="/users", tags=["Biometrics"])


def _review_response(result: ReviewResult) -> ReviewResponse:
    return ReviewResponse(
        ok=True,
        id=result.request.id,
        status=result.request.status,
        already_processed=result.already_processed,
        enrollment_id=result.enrollment.id if result.enrollment else None,
    )


@router.get("/biometric-requests", response_model=BiometricRequestListResponse)
def list_biometric_requests(
    status_filter: str = Query("pending", alias="status", description="pending, approved, rejected or all"),
    target_user_id: Optional[str] = Query(None, alias="targetUserId"),
    limit: Optional[int] = Query(None, ge=1),
    current_user: User = Depends(require_elevated()),
    db: Session = Depends(get_db),
):
    """
    List enrollment requests for the caller's tenant, newest first.

    **Status Codes:**
    - 200: Success
    - 400: Unknown status filter
    - 403: Caller is not a manager, admin or superadmin
    """
    service = get_biometric_enrollment_service()
    try:
        requests = service.list_requests(
            db,
            current_user.tenant_id,
            status=status_filter,
            target_user_id=target_user_id,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return BiometricRequestListResponse(
        requests=[BiometricRequestResponse.model_validate(r) for r in requests],
        count=len(requests),
    )


@router.post("/biometric-requests/{request_id}/approve", response_model=ReviewResponse)
def approve_biometric_request(
    request_id: str,
    current_user: User = Depends(require_elevated()),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Approve a pending request and queue its photos for template generation.

    **Status Codes:**
    - 200: Approved, or already approved/rejected (alreadyProcessed=true)
    - 403: Caller is not a manager, admin or superadmin
    - 404: Unknown request, or a captured photo is missing
    - 502: Photos could not be copied; request left pending
    """
    service = get_biometric_enrollment_service()
    try:
        result = service.approve(
            db, current_user.tenant_id, request_id, current_user.id, blob_store=blob_store
        )
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    except BlobNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Captured photo missing: {e}")
    except BlobStorageError as e:
        logger.error(
            f"Failed to promote enrollment photos for request {request_id}: {e}",
            extra={"event_type": "biometric_approve_storage_failed", "request_id": request_id},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="File storage failed")

    return _review_response(result)


@router.post("/biometric-requests/{request_id}/reject", response_model=ReviewResponse)
def reject_biometric_request(
    request_id: str,
    body: Optional[RejectRequest] = None,
    current_user: User = Depends(require_elevated()),
    db: Session = Depends(get_db),
):
    """
    Reject a pending request with an optional reason.

    **Status Codes:**
    - 200: Rejected, or already approved/rejected (alreadyProcessed=true)
    - 403: Caller is not a manager, admin or superadmin
    - 404: Unknown request
    """
    service = get_biometric_enrollment_service()
    try:
        result = service.reject(
            db,
            current_user.tenant_id,
            request_id,
            current_user.id,
            reason=body.reason if body else None,
        )
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")

    return _review_response(result)


@router.get("/biometric-enrollment-status/{user_id}", response_model=EnrollmentStatusResponse)
def get_biometric_enrollment_status(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Latest enrollment summary for a user of the caller's tenant.

    **Status Codes:**
    - 200: Success (status is "not-enrolled" when no record exists)
    - 404: Unknown user
    """
    service = get_biometric_enrollment_service()
    try:
        summary = service.get_status(db, current_user.tenant_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return EnrollmentStatusResponse(**summary)


@router.post("/biometric-identify", response_model=IdentifyResponse)
async def identify_biometric(
    photo: UploadFile = File(..., description="Photo of the person to identify"),
    group_id: Optional[str] = Form(None, alias="groupId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Identify the person in a query photo among the tenant's enrolled users.

    A best candidate below the match threshold is reported as no_match,
    never as a positive identification.

    **Response:**
    ```json
    {"matchedUserId": "uuid", "score": 0.97, "reason": "matched"}
    ```

    **Status Codes:**
    - 200: Success (including no_enrolled_users and no_match)
    - 400: Empty photo
    - 404: Unknown group
    - 413: Photo exceeds the upload size limit
    """
    limit = settings.MAX_UPLOAD_FILE_BYTES
    photo_bytes = await photo.read(limit + 1)
    if len(photo_bytes) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Photo exceeds {limit} bytes",
        )

    service = get_identification_service()
    try:
        result = await run_in_threadpool(
            service.identify, db, current_user.tenant_id, photo_bytes, group_id or None
        )
    except InvalidEventPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Group not found")

    return IdentifyResponse(
        matched_user_id=result.matched_user_id,
        score=result.score,
        reason=result.reason,
    )


@users_router.post("/{user_id}/biometric/revoke", response_model=RevokeResponse)
def revoke_biometric_enrollment(
    user_id: str,
    body: Optional[RevokeRequest] = None,
    current_user: User = Depends(require_elevated()),
    db: Session = Depends(get_db),
):
    """
    Revoke a user's pending or enrolled biometric record.

    **Status Codes:**
    - 200: Revoked, or nothing to revoke (revoked=false)
    - 403: Caller is not a manager, admin or superadmin
    - 404: Unknown user
    """
    service = get_biometric_enrollment_service()
    try:
        record = service.revoke(
            db,
            current_user.tenant_id,
            user_id,
            current_user.id,
            reason=body.reason if body else None,
        )
        summary = service.get_status(db, current_user.tenant_id, user_id)
    except EntityNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return RevokeResponse(
        ok=True,
        user_id=user_id,
        revoked=record is not None,
        status=summary["status"],
    )
