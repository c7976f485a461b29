"""
Offline Event Sync API

Endpoints:
- POST /mobile/offline-events - Record a replayed offline event (JSON or multipart)
- GET  /mobile/offline-files/{blob_id} - Stream a transient upload
- HEAD /mobile/offline-files/{blob_id} - Existence check for a transient upload

The event is acknowledged once it is durably recorded; side-effect handler
problems are reported in handlerOutcome but never fail the request.
"""
import json
import logging
from typing import BinaryIO, Iterator

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from app.api.v1.auth import get_current_user
from app.core.database import get_db
from app.models.user import User
from app.schemas.offline_event import OfflineEventCreate, OfflineEventResponse
from app.services.blob_store import (
    CHUNK_SIZE,
    BlobNotFoundError,
    BlobStorageError,
    BlobStore,
    BlobTooLargeError,
    get_blob_store,
)
from app.services.domain_mutators import InvalidEventPayloadError
from app.services.offline_event_service import IncomingFile, get_offline_event_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Offline Sync"])

FILE_FIELDS = ("files", "files[]")


async def _parse_multipart(request: Request) -> tuple[OfflineEventCreate, list[IncomingFile]]:
    form = await request.form()

    payload_raw = form.get("payloadJson") or "{}"
    try:
        payload = json.loads(payload_raw)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="payloadJson must be a JSON object",
        )

    try:
        body = OfflineEventCreate(
            event_type=form.get("eventType") or "",
            entity_ref=form.get("entityRef") or None,
            payload=payload,
            client_event_id=form.get("clientEventId") or None,
            created_at=form.get("createdAt") or None,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )

    files = []
    for field_name in FILE_FIELDS:
        for item in form.getlist(field_name):
            if isinstance(item, UploadFile):
                files.append(IncomingFile(item.filename, item.content_type, item.file))
    return body, files


async def _parse_json(request: Request) -> OfflineEventCreate:
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be JSON",
        )
    try:
        return OfflineEventCreate.model_validate(data)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        )


@router.post("/offline-events", response_model=OfflineEventResponse)
async def create_offline_event(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Record an offline event replayed by a mobile client.

    **Request (JSON):**
    ```json
    {"eventType": "task-update", "entityRef": "task-1",
     "payload": {"taskId": "task-1", "status": "completed"},
     "clientEventId": "c0ffee", "createdAt": "2026-01-12T10:30:00Z"}
    ```

    **Request (multipart/form-data):** fields `eventType`, `entityRef?`,
    `payloadJson`, `clientEventId?`, `createdAt?` and zero or more `files`.

    **Response:**
    ```json
    {"ok": true, "id": "uuid", "uploadedFilesCount": 2, "handlerOutcome": "applied"}
    ```

    **Status Codes:**
    - 200: Event recorded (whatever the handler outcome)
    - 400: Malformed event or too many files
    - 413: A file exceeds the upload size limit
    - 422: Body failed validation
    - 502: A file could not be stored; nothing was recorded
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        body, files = await _parse_multipart(request)
    else:
        body, files = await _parse_json(request), []

    service = get_offline_event_service()
    try:
        result = await run_in_threadpool(
            service.ingest,
            db,
            current_user.tenant_id,
            current_user.id,
            body.event_type,
            payload=body.payload,
            files=files,
            entity_ref=body.entity_ref,
            client_event_id=body.client_event_id,
            client_timestamp=body.created_at,
            blob_store=blob_store,
        )
    except InvalidEventPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BlobTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    except BlobStorageError as e:
        logger.error(
            f"Failed to store offline event files: {e}",
            extra={"event_type": "offline_event_storage_failed", "offline_event_type": body.event_type},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="File storage failed")

    return OfflineEventResponse(
        ok=True,
        id=result.id,
        uploaded_files_count=result.uploaded_files_count,
        handler_outcome=result.dispatch.outcome,
    )


def _iter_blob(reader: BinaryIO) -> Iterator[bytes]:
    with reader:
        while True:
            chunk = reader.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def _file_headers(info) -> dict:
    headers = {"Content-Length": str(info.size)}
    if info.filename:
        safe_name = info.filename.replace('"', "").replace("\r", "").replace("\n", "")
        headers["Content-Disposition"] = f'inline; filename="{safe_name}"'
    return headers


@router.api_route("/offline-files/{blob_id}", methods=["GET", "HEAD"])
def get_offline_file(
    blob_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    Stream a transient upload belonging to the caller's tenant.

    **Status Codes:**
    - 200: File streamed (GET) or exists (HEAD)
    - 404: Unknown blob, or blob tagged with another tenant
    """
    service = get_offline_event_service()
    try:
        if request.method == "HEAD":
            info = service.stat_offline_file(current_user.tenant_id, blob_id, blob_store)
            return Response(
                status_code=status.HTTP_200_OK,
                media_type=info.content_type,
                headers=_file_headers(info),
            )
        reader, info = service.open_offline_file(current_user.tenant_id, blob_id, blob_store)
    except BlobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    except BlobStorageError as e:
        logger.error(
            f"Failed to read offline file {blob_id}: {e}",
            extra={"event_type": "offline_file_read_failed", "blob_id": blob_id},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="File storage failed")

    return StreamingResponse(
        _iter_blob(reader),
        media_type=info.content_type,
        headers=_file_headers(info),
    )
