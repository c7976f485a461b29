"""Task aggregate ORM models: task, attachments, duration log, milestones, manager notes"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.core.database import Base


TASK_STATUSES = ("pending", "in-progress", "paused", "completed")
MILESTONE_STATUSES = ("pending", "started", "paused", "paused - problem", "finished")
DURATION_LOG_ACTIONS = ("start", "pause", "resume", "complete", "photo")


def _utcnow():
    return datetime.now(timezone.utc)


class Task(Base):
    """Task aggregate (collaborator store)."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    attachments = relationship(
        "TaskAttachment",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskAttachment.uploaded_at",
    )
    duration_logs = relationship(
        "TaskDurationLog",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskDurationLog.at",
    )

    def __repr__(self):
        return f"<Task(id={self.id}, title={self.title}, status={self.status})>"


class TaskAttachment(Base):
    """File attached to a task; blob_id points into the offline namespace."""

    __tablename__ = "task_attachments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    blob_id = Column(String(64), nullable=False)
    filename = Column(String(255), nullable=True)
    mime = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True)
    note = Column(Text, nullable=False, default="")
    uploaded_by = Column(String(36), nullable=True)
    source_offline_event_id = Column(String(36), nullable=True, index=True)
    uploaded_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    task = relationship("Task", back_populates="attachments")


class TaskDurationLog(Base):
    """Progress entry (start/pause/resume/complete/photo) on a task."""

    __tablename__ = "task_duration_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(20), nullable=False)
    at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    user_id = Column(String(36), nullable=True)
    note = Column(Text, nullable=False, default="")
    source_offline_event_id = Column(String(36), nullable=True, index=True)

    task = relationship("Task", back_populates="duration_logs")


class TaskMilestone(Base):
    """Milestone within a task."""

    __tablename__ = "task_milestones"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    completed_at = Column(DateTime(timezone=True), nullable=True)


class ManagerNote(Base):
    """
    Manager note / status update on a task.

    One record per task-update event, tagged with the source event id and
    never deduplicated.
    """

    __tablename__ = "manager_notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(36), nullable=False)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String(36), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    note = Column(Text, nullable=False, default="")
    author_id = Column(String(36), nullable=True)
    source_offline_event_id = Column(String(36), nullable=True, index=True)
    at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("idx_manager_notes_task_at", "task_id", "at"),
    )
