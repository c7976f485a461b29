"""Pydantic schemas for the offline event sync API

Field names are camelCase on the wire to match the mobile client.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Optional


class CamelModel(BaseModel):
    """Base model serializing to camelCase, accepting either case on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class OfflineEventCreate(CamelModel):
    """Structured (JSON) offline event body."""
    event_type: str = Field(..., min_length=1, max_length=50, description="Event type tag, e.g. 'task-update'")
    entity_ref: Optional[str] = Field(None, max_length=100, description="Entity the event concerns")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event-type specific fields")
    client_event_id: Optional[str] = Field(
        None,
        max_length=100,
        description="Stable client id of the queued event, reused on replay",
    )
    created_at: Optional[str] = Field(None, max_length=50, description="Client-side creation time")


class FileDescriptor(CamelModel):
    """Stored file as recorded on an event or enrollment request."""
    blob_id: str = Field(..., description="Blob id in the offline namespace")
    filename: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None


class OfflineEventResponse(CamelModel):
    """Acknowledgement of a durably recorded event."""
    ok: bool = True
    id: str = Field(..., description="Server-assigned event id")
    uploaded_files_count: int = Field(..., description="Number of files stored")
    handler_outcome: str = Field(
        ...,
        description="applied, skipped, failed or unhandled; informational only",
    )
