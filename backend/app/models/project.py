"""Project and project manager-note ORM models"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text

from app.core.database import Base


PROJECT_STATUSES = ("active", "paused", "closed")


class Project(Base):
    """
    Project aggregate (collaborator store).

    Only the fields the offline event handlers read or write are modelled.
    """

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name}, status={self.status})>"


class ProjectManagerNote(Base):
    """
    Manager note on a project.

    Notes created from offline events carry source_offline_event_id. They are
    not deduplicated: replaying a project-update event creates another note.
    """

    __tablename__ = "project_manager_notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    note = Column(Text, nullable=False)
    author_id = Column(String(36), nullable=True)
    source_offline_event_id = Column(String(36), nullable=True, index=True)
    at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("idx_project_notes_tenant_project_at", "tenant_id", "project_id", "at"),
    )
