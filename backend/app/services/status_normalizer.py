"""
Free-form status normalization for offline task updates

Mobile clients send whatever label the user picked. Two independent lookup
tables map it onto the canonical task and milestone enums; anything not in
a table is unrecognized and returns None, so the caller leaves that status
untouched. "done" is deliberately absent from both: the canonical task
value is "completed".
"""
from typing import Optional

from app.models.project import PROJECT_STATUSES
from app.models.task import MILESTONE_STATUSES, TASK_STATUSES

TASK_STATUS_ALIASES = {
    "pending": "pending",
    "in-progress": "in-progress",
    "in progress": "in-progress",
    "started": "in-progress",
    "paused": "paused",
    "completed": "completed",
}

MILESTONE_STATUS_ALIASES = {
    "pending": "pending",
    "planned": "pending",
    "plan": "pending",
    "started": "started",
    "in-progress": "started",
    "paused": "paused",
    "paused - problem": "paused - problem",
    "finished": "finished",
    "complete": "finished",
    "completed": "finished",
}


def _clean(raw) -> str:
    if raw is None:
        return ""
    return " ".join(str(raw).strip().lower().split())


def normalize_task_status(raw) -> Optional[str]:
    """Map a free-form label to a task status, or None if unrecognized."""
    value = TASK_STATUS_ALIASES.get(_clean(raw))
    return value if value in TASK_STATUSES else None


def normalize_milestone_status(raw) -> Optional[str]:
    """Map a free-form label to a milestone status, or None if unrecognized."""
    value = MILESTONE_STATUS_ALIASES.get(_clean(raw))
    return value if value in MILESTONE_STATUSES else None


def normalize_project_status(raw) -> Optional[str]:
    value = _clean(raw)
    return value if value in PROJECT_STATUSES else None
