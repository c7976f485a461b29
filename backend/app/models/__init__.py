"""SQLAlchemy ORM models"""
from app.models.user import User, UserRole
from app.models.group import Group
from app.models.project import Project, ProjectManagerNote
from app.models.task import Task, TaskAttachment, TaskDurationLog, TaskMilestone, ManagerNote
from app.models.document import Document
from app.models.offline_event import OfflineEvent
from app.models.biometric_enrollment_request import BiometricEnrollmentRequest, EnrollmentRequestStatus
from app.models.biometric_enrollment import BiometricEnrollment, EnrollmentStatus

__all__ = [
    "User",
    "UserRole",
    "Group",
    "Project",
    "ProjectManagerNote",
    "Task",
    "TaskAttachment",
    "TaskDurationLog",
    "TaskMilestone",
    "ManagerNote",
    "Document",
    "OfflineEvent",
    "BiometricEnrollmentRequest",
    "EnrollmentRequestStatus",
    "BiometricEnrollment",
    "EnrollmentStatus",
]
