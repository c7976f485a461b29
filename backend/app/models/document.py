"""Document SQLAlchemy ORM model"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from app.core.database import Base


class Document(Base):
    """
    User document captured on a mobile device.

    blob_id always refers to the durable "documents" namespace; the transient
    upload is copied there by the user-document handler.
    """

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    title = Column(String(200), nullable=True)
    tag = Column(String(100), nullable=True)
    project_id = Column(String(36), nullable=False, index=True)
    target_user_id = Column(String(36), nullable=True, index=True)
    blob_id = Column(String(64), nullable=False)
    filename = Column(String(255), nullable=True)
    mime = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True)
    uploaded_by = Column(String(36), nullable=True)
    source_offline_event_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<Document(id={self.id}, project_id={self.project_id}, blob_id={self.blob_id})>"
