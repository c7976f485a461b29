"""
Domain mutators for the project, task, document and user aggregates

Thin tenant-scoped find/update helpers used by the offline event handlers.
Every lookup filters on tenant_id, so a handler can never reach another
tenant's rows. Mutators add/flush but never commit; the caller owns the
transaction boundary.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.models.document import Document
from app.models.group import Group
from app.models.project import PROJECT_STATUSES, Project, ProjectManagerNote
from app.models.task import (
    DURATION_LOG_ACTIONS,
    MILESTONE_STATUSES,
    TASK_STATUSES,
    ManagerNote,
    Task,
    TaskAttachment,
    TaskDurationLog,
    TaskMilestone,
)
from app.models.user import User

logger = logging.getLogger(__name__)


class InvalidEventPayloadError(ValueError):
    """Malformed input: missing or invalid tenant, entity or file reference."""


class EntityNotFoundError(LookupError):
    """Referenced aggregate does not exist within the tenant."""

    def __init__(self, entity: str, entity_id: Optional[str]):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


def require_id(value, field_name: str) -> str:
    """Return a stripped id string or raise InvalidEventPayloadError."""
    if value is None or not str(value).strip():
        raise InvalidEventPayloadError(f"{field_name} is required")
    return str(value).strip()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def find_project(db: Session, tenant_id: str, project_id: str) -> Project:
    project = (
        db.query(Project)
        .filter(Project.tenant_id == tenant_id, Project.id == project_id)
        .first()
    )
    if project is None:
        raise EntityNotFoundError("Project", project_id)
    return project


def find_task(db: Session, tenant_id: str, task_id: str) -> Task:
    task = db.query(Task).filter(Task.tenant_id == tenant_id, Task.id == task_id).first()
    if task is None:
        raise EntityNotFoundError("Task", task_id)
    return task


def find_milestone(db: Session, tenant_id: str, task_id: str, milestone_id: str) -> TaskMilestone:
    milestone = (
        db.query(TaskMilestone)
        .filter(
            TaskMilestone.tenant_id == tenant_id,
            TaskMilestone.task_id == task_id,
            TaskMilestone.id == milestone_id,
        )
        .first()
    )
    if milestone is None:
        raise EntityNotFoundError("TaskMilestone", milestone_id)
    return milestone


def find_user(db: Session, tenant_id: str, user_id: str) -> User:
    user = db.query(User).filter(User.tenant_id == tenant_id, User.id == user_id).first()
    if user is None:
        raise EntityNotFoundError("User", user_id)
    return user


def find_group(db: Session, tenant_id: str, group_id: str) -> Group:
    group = db.query(Group).filter(Group.tenant_id == tenant_id, Group.id == group_id).first()
    if group is None:
        raise EntityNotFoundError("Group", group_id)
    return group


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------

def set_project_status(db: Session, project: Project, status: str) -> Project:
    """Last-write-wins status update."""
    if status not in PROJECT_STATUSES:
        raise InvalidEventPayloadError(f"Unsupported project status: {status}")
    project.status = status
    project.updated_at = datetime.now(timezone.utc)
    db.flush()
    return project


def add_project_note(
    db: Session,
    project: Project,
    note: str,
    author_id: Optional[str],
    source_offline_event_id: Optional[str],
) -> ProjectManagerNote:
    """Append a manager note to a project. Never deduplicated."""
    record = ProjectManagerNote(
        tenant_id=project.tenant_id,
        project_id=project.id,
        status=project.status,
        note=note,
        author_id=author_id,
        source_offline_event_id=source_offline_event_id,
    )
    db.add(record)
    db.flush()
    return record


# ---------------------------------------------------------------------------
# Task aggregate
# ---------------------------------------------------------------------------

def set_task_status(db: Session, task: Task, status: str) -> Task:
    if status not in TASK_STATUSES:
        raise InvalidEventPayloadError(f"Unsupported task status: {status}")
    task.status = status
    task.updated_at = datetime.now(timezone.utc)
    db.flush()
    return task


def set_milestone_status(db: Session, milestone: TaskMilestone, status: str) -> TaskMilestone:
    if status not in MILESTONE_STATUSES:
        raise InvalidEventPayloadError(f"Unsupported milestone status: {status}")
    milestone.status = status
    if status == "finished" and milestone.completed_at is None:
        milestone.completed_at = datetime.now(timezone.utc)
    elif status != "finished":
        milestone.completed_at = None
    db.flush()
    return milestone


def add_task_note(
    db: Session,
    task: Task,
    status: str,
    note: str,
    author_id: Optional[str],
    source_offline_event_id: Optional[str],
) -> ManagerNote:
    """Append a manager note to a task. Never deduplicated."""
    record = ManagerNote(
        tenant_id=task.tenant_id,
        task_id=task.id,
        project_id=task.project_id,
        status=status,
        note=note,
        author_id=author_id,
        source_offline_event_id=source_offline_event_id,
    )
    db.add(record)
    db.flush()
    return record


def add_task_attachment(
    db: Session,
    task: Task,
    file: dict,
    note: str,
    uploaded_by: Optional[str],
    source_offline_event_id: Optional[str],
) -> TaskAttachment:
    blob_id = file.get("blobId")
    if not blob_id:
        raise InvalidEventPayloadError("file descriptor is missing blobId")
    attachment = TaskAttachment(
        task_id=task.id,
        blob_id=blob_id,
        filename=file.get("filename"),
        mime=file.get("contentType"),
        size=file.get("size"),
        note=note or "",
        uploaded_by=uploaded_by,
        source_offline_event_id=source_offline_event_id,
    )
    db.add(attachment)
    db.flush()
    return attachment


def add_duration_log(
    db: Session,
    task: Task,
    action: str,
    user_id: Optional[str],
    note: str,
    source_offline_event_id: Optional[str],
) -> TaskDurationLog:
    if action not in DURATION_LOG_ACTIONS:
        raise InvalidEventPayloadError(f"Unsupported duration log action: {action}")
    entry = TaskDurationLog(
        task_id=task.id,
        action=action,
        user_id=user_id,
        note=note or "",
        source_offline_event_id=source_offline_event_id,
    )
    db.add(entry)
    task.updated_at = datetime.now(timezone.utc)
    db.flush()
    return entry


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def create_document(
    db: Session,
    project: Project,
    blob_id: str,
    filename: Optional[str],
    mime: Optional[str],
    size: Optional[int],
    title: Optional[str],
    tag: Optional[str],
    target_user_id: Optional[str],
    uploaded_by: Optional[str],
    source_offline_event_id: Optional[str],
) -> Document:
    document = Document(
        tenant_id=project.tenant_id,
        title=title or filename,
        tag=tag,
        project_id=project.id,
        target_user_id=target_user_id,
        blob_id=blob_id,
        filename=filename,
        mime=mime,
        size=size,
        uploaded_by=uploaded_by,
        source_offline_event_id=source_offline_event_id,
    )
    db.add(document)
    db.flush()
    return document
