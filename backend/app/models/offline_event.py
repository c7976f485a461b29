"""OfflineEvent SQLAlchemy ORM model

Append-only log of events queued by disconnected mobile clients.

Attributes:
    id: UUID primary key (server-assigned)
    tenant_id: Tenant of the submitting actor
    user_id: Submitting actor
    event_type: Client event type tag (unknown tags are stored too)
    entity_ref: Optional reference to the entity the event concerns
    client_event_id: Client's stable id for the queued event, reused on replay
    payload: JSON object (stored as Text for SQLite compatibility)
    uploaded_files: JSON array of {blobId, filename, contentType, size}
    client_timestamp: Client-side creation time, as sent
    received_at: Server receive time (UTC)

Rows are written once by the ingestion endpoint and never updated or deleted.
"""
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String, Text

from app.core.database import Base


class OfflineEvent(Base):
    """Durable record of what a mobile client asked for."""

    __tablename__ = "offline_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    user_id = Column(String(36), nullable=True)
    event_type = Column(String(50), nullable=False)
    entity_ref = Column(String(100), nullable=True)
    client_event_id = Column(String(100), nullable=True)
    payload = Column(Text, nullable=False, default="{}")
    uploaded_files = Column(Text, nullable=False, default="[]")
    client_timestamp = Column(String(50), nullable=True)
    received_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_offline_events_tenant_type_received", "tenant_id", "event_type", "received_at"),
        Index("idx_offline_events_tenant_client_event", "tenant_id", "client_event_id"),
    )

    @property
    def payload_dict(self) -> dict:
        return json.loads(self.payload or "{}")

    @property
    def files(self) -> list[dict]:
        return json.loads(self.uploaded_files or "[]")

    def __repr__(self):
        return (
            f"<OfflineEvent(id={self.id}, tenant_id={self.tenant_id}, "
            f"event_type={self.event_type}, files={len(self.files)})>"
        )
