"""
Offline Event Dispatcher and Handlers

Routes a freshly recorded OfflineEvent to at most one handler, keyed by
its event type. The set of event types is closed (OfflineEventType); each
type has exactly one registered OfflineEventHandler. Unknown types are
recorded by ingestion and left unhandled.

Handlers apply their side effects as a sequence of named steps. Each step
commits on its own; a failing step rolls back only its own changes and is
reported as "skipped" (bad input, missing aggregate) or "failed"
(anything else). Nothing a handler does can fail the ingestion request.

Replay behavior per type:
    project-update   status: last write wins; note: a new note per delivery
    user-document    a new document (and blob copy) per delivery
    task-update      statuses: last write wins; note: a new note per delivery
    activity-log     new attachments and a new duration entry per delivery
    biometric-enroll upsert by (tenant_id, clientEventId or event id)

Duplicate notes, documents and attachments on replay are accepted; clients
are expected to replay only events that were never acknowledged.
"""
import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.metrics import record_handler_outcome
from app.models.offline_event import OfflineEvent
from app.models.task import DURATION_LOG_ACTIONS
from app.services.biometric_enrollment_service import (
    BiometricEnrollmentService,
    get_biometric_enrollment_service,
)
from app.services.blob_store import (
    DOCUMENTS_NAMESPACE,
    OFFLINE_NAMESPACE,
    BlobStore,
    get_blob_store,
)
from app.services.domain_mutators import (
    EntityNotFoundError,
    InvalidEventPayloadError,
    add_duration_log,
    add_project_note,
    add_task_attachment,
    add_task_note,
    create_document,
    find_milestone,
    find_project,
    find_task,
    find_user,
    require_id,
    set_milestone_status,
    set_project_status,
    set_task_status,
)
from app.services.status_normalizer import (
    normalize_milestone_status,
    normalize_project_status,
    normalize_task_status,
)

logger = logging.getLogger(__name__)


class OfflineEventType(str, enum.Enum):
    """Event types that have a side-effect handler."""

    PROJECT_UPDATE = "project-update"
    USER_DOCUMENT = "user-document"
    TASK_UPDATE = "task-update"
    ACTIVITY_LOG = "activity-log"
    BIOMETRIC_ENROLL = "biometric-enroll"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["OfflineEventType"]:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"

# Expected per-step problems; reported as skipped rather than failed
_SKIPPABLE_ERRORS = (InvalidEventPayloadError, EntityNotFoundError)


@dataclass
class StepResult:
    name: str
    outcome: str
    detail: Optional[str] = None


@dataclass
class DispatchResult:
    """What the dispatcher did with one event."""

    event_id: str
    event_type: str
    handled: bool
    steps: list[StepResult] = field(default_factory=list)

    @property
    def outcome(self) -> str:
        if not self.handled:
            return "unhandled"
        outcomes = {step.outcome for step in self.steps}
        if FAILED in outcomes:
            return FAILED
        if APPLIED in outcomes:
            return APPLIED
        return SKIPPED

    def step(self, name: str) -> Optional[StepResult]:
        return next((s for s in self.steps if s.name == name), None)


class HandlerContext:
    """
    Per-event state handed to a handler.

    Attributes:
        db: Session used for every step
        event: The recorded OfflineEvent
        blob_store: Store for copies out of the offline namespace
        enrollment_service: Used by the biometric-enroll handler
    """

    def __init__(
        self,
        db: Session,
        event: OfflineEvent,
        blob_store: BlobStore,
        enrollment_service: BiometricEnrollmentService,
    ):
        self.db = db
        self.event = event
        self.blob_store = blob_store
        self.enrollment_service = enrollment_service
        self.payload = event.payload_dict
        self.files = event.files
        self.steps: list[StepResult] = []

    @property
    def tenant_id(self) -> str:
        return self.event.tenant_id

    @property
    def actor_id(self) -> Optional[str]:
        return self.event.user_id

    def text(self, key: str) -> str:
        """Payload value as a stripped string ("" when absent)."""
        value = self.payload.get(key)
        return str(value).strip() if value is not None else ""

    def _log_extra(self, name: str, **fields) -> dict:
        return {
            "event_type": "offline_event_step",
            "offline_event_id": self.event.id,
            "offline_event_type": self.event.event_type,
            "step": name,
            **fields,
        }

    def skip(self, name: str, reason: str) -> None:
        self.steps.append(StepResult(name, SKIPPED, reason))
        logger.info(
            f"Offline event step '{name}' skipped: {reason}",
            extra=self._log_extra(name, outcome=SKIPPED),
        )

    def run_step(self, name: str, fn: Callable[[], Any], on_error: Optional[Callable[[], None]] = None) -> Any:
        """
        Run one side effect and commit it.

        on_error runs after the rollback when the step is skipped or fails,
        to undo effects outside the database (stored blobs).

        Returns the step's result, or None when it was skipped or failed.
        """
        try:
            result = fn()
            self.db.commit()
        except _SKIPPABLE_ERRORS as e:
            self.db.rollback()
            if on_error:
                on_error()
            self.skip(name, str(e))
            return None
        except Exception as e:
            self.db.rollback()
            if on_error:
                on_error()
            self.steps.append(StepResult(name, FAILED, str(e)))
            logger.error(
                f"Offline event step '{name}' failed: {e}",
                exc_info=True,
                extra=self._log_extra(name, outcome=FAILED, error_type=type(e).__name__),
            )
            return None

        self.steps.append(StepResult(name, APPLIED))
        logger.debug(
            f"Offline event step '{name}' applied",
            extra=self._log_extra(name, outcome=APPLIED),
        )
        return result

    def lookup(self, name: str, fn: Callable[[], Any]) -> Any:
        """Resolve an aggregate without committing; records a skip if it is missing."""
        try:
            return fn()
        except _SKIPPABLE_ERRORS as e:
            self.skip(name, str(e))
            return None


class OfflineEventHandler(ABC):
    """Side-effect handler for one OfflineEventType."""

    event_type: OfflineEventType

    @abstractmethod
    def apply(self, ctx: HandlerContext) -> None:
        """Apply the event's side effects through ctx.run_step()."""


_HANDLERS: dict[OfflineEventType, OfflineEventHandler] = {}


def register_handler(cls: type[OfflineEventHandler]) -> type[OfflineEventHandler]:
    """Class decorator: register one handler instance for cls.event_type."""
    if cls.event_type in _HANDLERS:
        raise RuntimeError(f"Duplicate handler for {cls.event_type.value}")
    _HANDLERS[cls.event_type] = cls()
    return cls


def get_handler(event_type: OfflineEventType) -> OfflineEventHandler:
    return _HANDLERS[event_type]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

@register_handler
class ProjectUpdateHandler(OfflineEventHandler):
    """{projectId, status?, managerNote?} -> project status and/or a project note."""

    event_type = OfflineEventType.PROJECT_UPDATE

    def apply(self, ctx: HandlerContext) -> None:
        project_id = ctx.text("projectId") or ctx.event.entity_ref
        project = ctx.lookup(
            "project",
            lambda: find_project(ctx.db, ctx.tenant_id, require_id(project_id, "projectId")),
        )
        if project is None:
            return

        raw_status = ctx.text("status")
        status = normalize_project_status(raw_status)
        if status:
            ctx.run_step("project_status", lambda: set_project_status(ctx.db, project, status))
        elif raw_status:
            ctx.skip("project_status", f"unrecognized project status '{raw_status}'")

        note = ctx.text("managerNote")
        if note:
            ctx.run_step(
                "project_note",
                lambda: add_project_note(ctx.db, project, note, ctx.actor_id, ctx.event.id),
            )

        if not status and not note:
            ctx.skip("project_update", "no status or managerNote to apply")


@register_handler
class UserDocumentHandler(OfflineEventHandler):
    """{projectId, targetUserId?, title?, tag?} + file -> durable document."""

    event_type = OfflineEventType.USER_DOCUMENT

    def apply(self, ctx: HandlerContext) -> None:
        copies: list[str] = []
        ctx.run_step(
            "document",
            lambda: self._create(ctx, copies),
            on_error=lambda: ctx.blob_store.discard(DOCUMENTS_NAMESPACE, copies),
        )

    def _create(self, ctx: HandlerContext, copies: list[str]):
        project = find_project(ctx.db, ctx.tenant_id, require_id(ctx.text("projectId"), "projectId"))
        if not ctx.files:
            raise InvalidEventPayloadError("user-document requires an uploaded file")
        source = ctx.files[0]
        if not source.get("blobId"):
            raise InvalidEventPayloadError("file descriptor is missing blobId")

        target_user_id = ctx.text("targetUserId") or None
        if target_user_id:
            try:
                find_user(ctx.db, ctx.tenant_id, target_user_id)
            except EntityNotFoundError:
                logger.warning(
                    f"Document target user {target_user_id} not found; storing unlinked",
                    extra={
                        "event_type": "document_target_user_missing",
                        "offline_event_id": ctx.event.id,
                        "target_user_id": target_user_id,
                    },
                )
                target_user_id = None

        copied = ctx.blob_store.copy(
            OFFLINE_NAMESPACE,
            source["blobId"],
            DOCUMENTS_NAMESPACE,
            {
                "tenantId": ctx.tenant_id,
                "uploaderId": ctx.actor_id,
                "kind": "document",
                "projectId": project.id,
            },
        )
        copies.append(copied.id)
        return create_document(
            ctx.db,
            project,
            blob_id=copied.id,
            filename=copied.filename or source.get("filename"),
            mime=copied.content_type,
            size=copied.size,
            title=ctx.text("title") or None,
            tag=ctx.text("tag") or None,
            target_user_id=target_user_id,
            uploaded_by=ctx.actor_id,
            source_offline_event_id=ctx.event.id,
        )


@register_handler
class TaskUpdateHandler(OfflineEventHandler):
    """{taskId, milestone?, status?, note?} -> task/milestone status + manager note."""

    event_type = OfflineEventType.TASK_UPDATE

    def apply(self, ctx: HandlerContext) -> None:
        task_id = ctx.text("taskId") or ctx.event.entity_ref
        task = ctx.lookup(
            "task",
            lambda: find_task(ctx.db, ctx.tenant_id, require_id(task_id, "taskId")),
        )
        if task is None:
            return

        raw_status = ctx.text("status")
        task_status = normalize_task_status(raw_status)
        milestone_status = normalize_milestone_status(raw_status)

        if task_status:
            ctx.run_step("task_status", lambda: set_task_status(ctx.db, task, task_status))
        elif raw_status:
            ctx.skip("task_status", f"unrecognized task status '{raw_status}'")

        milestone_id = ctx.text("milestone") or ctx.text("milestoneId")
        if milestone_id:
            if milestone_status:
                ctx.run_step(
                    "milestone_status",
                    lambda: set_milestone_status(
                        ctx.db,
                        find_milestone(ctx.db, ctx.tenant_id, task.id, milestone_id),
                        milestone_status,
                    ),
                )
            else:
                ctx.skip("milestone_status", f"unrecognized milestone status '{raw_status}'")

        note_status = milestone_status or task_status or task.status
        ctx.run_step(
            "manager_note",
            lambda: add_task_note(
                ctx.db, task, note_status, ctx.text("note"), ctx.actor_id, ctx.event.id
            ),
        )


@register_handler
class ActivityLogHandler(OfflineEventHandler):
    """{taskId, note?, action?} + files -> one attachment per file, one duration entry."""

    event_type = OfflineEventType.ACTIVITY_LOG

    def apply(self, ctx: HandlerContext) -> None:
        task_id = ctx.text("taskId") or ctx.event.entity_ref
        task = ctx.lookup(
            "task",
            lambda: find_task(ctx.db, ctx.tenant_id, require_id(task_id, "taskId")),
        )
        if task is None:
            return

        note = ctx.text("note")
        for index, descriptor in enumerate(ctx.files):
            ctx.run_step(
                f"attachment[{index}]",
                lambda d=descriptor: add_task_attachment(
                    ctx.db, task, d, note, ctx.actor_id, ctx.event.id
                ),
            )

        action = ctx.text("action").lower()
        if action not in DURATION_LOG_ACTIONS:
            action = "photo"
        ctx.run_step(
            "duration_log",
            lambda: add_duration_log(ctx.db, task, action, ctx.actor_id, note, ctx.event.id),
        )


@register_handler
class BiometricEnrollHandler(OfflineEventHandler):
    """{targetUserId, groupId?} + photos -> upserted enrollment request."""

    event_type = OfflineEventType.BIOMETRIC_ENROLL

    def apply(self, ctx: HandlerContext) -> None:
        ctx.run_step("enrollment_request", lambda: self._upsert(ctx))

    def _upsert(self, ctx: HandlerContext):
        request, action = ctx.enrollment_service.upsert_request(
            ctx.db,
            ctx.tenant_id,
            source_event_id=ctx.event.client_event_id or ctx.event.id,
            target_user_id=ctx.text("targetUserId") or ctx.event.entity_ref,
            files=ctx.files,
            performed_by_user_id=ctx.actor_id,
            group_id=ctx.text("groupId") or None,
            offline_event_id=ctx.event.id,
            notes=ctx.text("note") or None,
        )
        return request


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def dispatch_event(
    db: Session,
    event: OfflineEvent,
    blob_store: Optional[BlobStore] = None,
    enrollment_service: Optional[BiometricEnrollmentService] = None,
) -> DispatchResult:
    """
    Run the handler registered for the event's type, if any.

    Never raises for handler errors; the result lists each step's outcome.
    """
    event_type = OfflineEventType.parse(event.event_type)
    if event_type is None:
        record_handler_outcome("unknown", "unhandled")
        logger.info(
            f"No handler for offline event type '{event.event_type}'",
            extra={
                "event_type": "offline_event_unhandled",
                "offline_event_id": event.id,
                "offline_event_type": event.event_type,
            },
        )
        return DispatchResult(event_id=event.id, event_type=event.event_type, handled=False)

    ctx = HandlerContext(
        db,
        event,
        blob_store or get_blob_store(),
        enrollment_service or get_biometric_enrollment_service(),
    )
    handler = get_handler(event_type)
    try:
        handler.apply(ctx)
    except _SKIPPABLE_ERRORS as e:
        db.rollback()
        ctx.skip(type(handler).__name__, str(e))
    except Exception as e:
        db.rollback()
        ctx.steps.append(StepResult(type(handler).__name__, FAILED, str(e)))
        logger.error(
            f"Offline event handler {type(handler).__name__} failed: {e}",
            exc_info=True,
            extra={
                "event_type": "offline_event_handler_failed",
                "offline_event_id": event.id,
                "offline_event_type": event_type.value,
            },
        )

    for step in ctx.steps:
        record_handler_outcome(event_type.value, step.outcome)

    result = DispatchResult(
        event_id=event.id,
        event_type=event_type.value,
        handled=True,
        steps=ctx.steps,
    )
    logger.info(
        f"Offline event {event.id} dispatched to {type(handler).__name__}: {result.outcome}",
        extra={
            "event_type": "offline_event_dispatched",
            "offline_event_id": event.id,
            "offline_event_type": event_type.value,
            "outcome": result.outcome,
            "steps": {step.name: step.outcome for step in ctx.steps},
        },
    )
    return result
