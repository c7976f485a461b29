"""
Biometric Template Worker

Background process that turns approved enrollment photos into templates.

Every BIOMETRIC_WORKER_INTERVAL_SECONDS the worker:
    1. Scans up to batch_size * 3 pending records that have photos,
       newest updated_at first, passing over records in no-photos backoff
    2. Starts at most batch_size of them that are not already in flight
    3. For each: reads up to max_photos photos from the biometrics
       namespace, computes a template and, only if one was produced,
       moves the record pending -> enrolled with a conditional UPDATE

Guarantees:
    - A record is never enrolled without a template (no photos readable ->
      record stays pending and is retried once its backoff of
      no_photos_backoff_ticks ticks has passed, or as soon as it is
      re-approved; meanwhile it does not crowd older records out of the scan)
    - A record is processed by at most one task per process at a time
      (in-flight id set); a double pick elsewhere only redoes work, the
      conditional UPDATE lets exactly one writer win
    - One record failing never stops the batch or the loop

Scheduling uses APScheduler's AsyncIOScheduler with an IntervalTrigger
(max_instances=1, coalesce=True). Blocking database and blob work runs in
worker threads via asyncio.to_thread.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import get_db_session
from app.core.metrics import record_worker_outcome
from app.models.biometric_enrollment import BiometricEnrollment, EnrollmentStatus
from app.services.biometric_enrollment_service import refresh_biometric_summary
from app.services.blob_store import (
    BIOMETRICS_NAMESPACE,
    BlobNotFoundError,
    BlobStorageError,
    BlobStore,
    get_blob_store,
)
from app.services.template_service import TemplateGenerator, encode_template, get_template_generator

logger = logging.getLogger(__name__)

WORKER_JOB_ID = "biometric_template_worker"

ENROLLED = "enrolled"
NO_PHOTOS = "no_photos"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class WorkerStatus:
    """Status information about the template worker."""

    running: bool
    interval_seconds: float
    batch_size: int
    in_flight: int
    ticks: int
    last_tick: Optional[datetime]
    enrolled: int
    failed: int


class BiometricTemplateWorker:
    """
    Polls pending enrollment records and generates their templates.

    Attributes:
        DEFAULT_STOP_TIMEOUT_SECONDS: How long stop() waits for in-flight records
    """

    DEFAULT_STOP_TIMEOUT_SECONDS = 10.0

    def __init__(
        self,
        session_factory=None,
        blob_store: Optional[BlobStore] = None,
        generator: Optional[TemplateGenerator] = None,
        batch_size: Optional[int] = None,
        max_photos: Optional[int] = None,
        interval_seconds: Optional[float] = None,
        no_photos_backoff_ticks: Optional[int] = None,
    ):
        """
        Args:
            session_factory: sessionmaker for worker sessions (default SessionLocal)
            blob_store: Store holding the biometrics namespace
            generator: Template generator (shared with identification)
            batch_size: Max records started per tick
            max_photos: Max photos read per record
            interval_seconds: Tick interval
            no_photos_backoff_ticks: Ticks a record with no readable photos sits out
        """
        self._session_factory = session_factory
        self._blob_store = blob_store or get_blob_store()
        self._generator = generator or get_template_generator()
        self.batch_size = batch_size or settings.BIOMETRIC_WORKER_BATCH_SIZE
        self.max_photos = max_photos or settings.BIOMETRIC_WORKER_MAX_PHOTOS
        self.interval_seconds = interval_seconds or settings.BIOMETRIC_WORKER_INTERVAL_SECONDS
        if no_photos_backoff_ticks is None:
            no_photos_backoff_ticks = settings.BIOMETRIC_WORKER_NO_PHOTOS_BACKOFF_TICKS
        self.no_photos_backoff_ticks = no_photos_backoff_ticks

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        # record id -> (last tick it sits out, photo_refs it failed with)
        self._backoff: dict[str, tuple[int, str]] = {}
        self._ticks = 0
        self._last_tick: Optional[datetime] = None
        self._enrolled = 0
        self._failed = 0

        logger.info(
            "BiometricTemplateWorker initialized",
            extra={
                "event_type": "template_worker_init",
                "batch_size": self.batch_size,
                "max_photos": self.max_photos,
                "interval_seconds": self.interval_seconds,
                "template_version": self._generator.version,
            },
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start ticking. Must be called from a running event loop."""
        if self._running:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_tick_wrapper,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=WORKER_JOB_ID,
            name="Biometric Template Generation",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "BiometricTemplateWorker started",
            extra={"event_type": "template_worker_started", "interval_seconds": self.interval_seconds},
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking, then wait for in-flight records up to timeout and cancel the rest."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False

        timeout = self.DEFAULT_STOP_TIMEOUT_SECONDS if timeout is None else timeout
        pending = set(self._tasks)
        if pending:
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                logger.warning(
                    f"Cancelled {len(not_done)} in-flight template task(s) at shutdown",
                    extra={"event_type": "template_worker_tasks_cancelled", "count": len(not_done)},
                )

        logger.info(
            "BiometricTemplateWorker stopped",
            extra={"event_type": "template_worker_stopped"},
        )

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every record started so far has finished."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> WorkerStatus:
        return WorkerStatus(
            running=self._running,
            interval_seconds=self.interval_seconds,
            batch_size=self.batch_size,
            in_flight=len(self._in_flight),
            ticks=self._ticks,
            last_tick=self._last_tick,
            enrolled=self._enrolled,
            failed=self._failed,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def _run_tick_wrapper(self) -> None:
        """Wrapper to run a tick with error handling."""
        try:
            await self.run_tick()
        except Exception as e:
            # Log but don't propagate - scheduler should continue running
            logger.error(
                f"Template worker tick failed: {e}",
                extra={"event_type": "template_worker_tick_error", "error": str(e)},
                exc_info=True,
            )

    async def run_tick(self) -> list[str]:
        """
        Run one polling cycle.

        Records are started as background tasks; this returns once they are
        launched, not when they finish.

        Returns:
            Ids of the records started this tick
        """
        self._ticks += 1
        self._last_tick = datetime.now(timezone.utc)
        for record_id, (until, _) in list(self._backoff.items()):
            if until < self._ticks:
                self._backoff.pop(record_id, None)

        candidates = await asyncio.to_thread(self._select_candidates)
        started = []
        for record_id in candidates:
            if len(started) >= self.batch_size:
                break
            if record_id in self._in_flight:
                continue
            self._in_flight.add(record_id)
            task = asyncio.create_task(self._process_guarded(record_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(record_id)

        if started:
            logger.info(
                f"Template worker started {len(started)} record(s)",
                extra={
                    "event_type": "template_worker_tick",
                    "started": started,
                    "candidates": len(candidates),
                    "in_flight": len(self._in_flight),
                },
            )
        return started

    def _select_candidates(self) -> list[str]:
        backoff = dict(self._backoff)
        # Widen the scan by the records that will be passed over
        scan = self.batch_size * 3 + len(backoff) + len(self._in_flight)
        with get_db_session(self._session_factory) as db:
            rows = (
                db.query(BiometricEnrollment.id, BiometricEnrollment.photo_refs)
                .filter(
                    BiometricEnrollment.status == EnrollmentStatus.PENDING.value,
                    BiometricEnrollment.photo_refs.isnot(None),
                    BiometricEnrollment.photo_refs != "[]",
                )
                .order_by(BiometricEnrollment.updated_at.desc())
                .limit(scan)
                .all()
            )
        candidates = []
        for row in rows:
            if row.id in backoff and backoff[row.id][1] == row.photo_refs:
                continue
            if json.loads(row.photo_refs or "[]"):
                candidates.append(row.id)
        return candidates

    async def _process_guarded(self, record_id: str) -> None:
        try:
            await self.process_record(record_id)
        except Exception as e:
            self._failed += 1
            record_worker_outcome(FAILED)
            logger.error(
                f"Template generation failed for enrollment {record_id}: {e}",
                exc_info=True,
                extra={"event_type": "template_worker_record_failed", "enrollment_id": record_id},
            )
        finally:
            self._in_flight.discard(record_id)

    async def process_record(self, record_id: str) -> str:
        """
        Generate and store the template for one record.

        Returns:
            "enrolled", "no_photos" or "skipped" (no longer pending, or
            changed underneath us)
        """
        outcome = await asyncio.to_thread(self._process_record_sync, record_id)
        if outcome == ENROLLED:
            self._enrolled += 1
        record_worker_outcome(outcome)
        return outcome

    def _read_photos(self, record: BiometricEnrollment) -> list[bytes]:
        photos = []
        for blob_id in record.photo_ids[: self.max_photos]:
            try:
                photos.append(self._blob_store.read_bytes(BIOMETRICS_NAMESPACE, blob_id))
            except (BlobNotFoundError, BlobStorageError) as e:
                logger.warning(
                    f"Enrollment photo {blob_id} unavailable: {e}",
                    extra={
                        "event_type": "template_worker_photo_missing",
                        "enrollment_id": record.id,
                        "blob_id": blob_id,
                    },
                )
        return photos

    def _process_record_sync(self, record_id: str) -> str:
        with get_db_session(self._session_factory) as db:
            record = db.query(BiometricEnrollment).filter(BiometricEnrollment.id == record_id).first()
            if record is None or record.status != EnrollmentStatus.PENDING.value:
                return SKIPPED

            photos = self._read_photos(record)
            template = self._generator.generate(photos) if photos else None
            if template is None:
                logger.warning(
                    "No photos could be read; enrollment left pending",
                    extra={
                        "event_type": "template_worker_no_photos",
                        "enrollment_id": record.id,
                        "user_id": record.user_id,
                        "backoff_ticks": self.no_photos_backoff_ticks,
                    },
                )
                self._backoff[record.id] = (self._ticks + self.no_photos_backoff_ticks, record.photo_refs)
                return NO_PHOTOS

            now = datetime.now(timezone.utc)
            updated = (
                db.query(BiometricEnrollment)
                .filter(
                    BiometricEnrollment.id == record.id,
                    BiometricEnrollment.tenant_id == record.tenant_id,
                    BiometricEnrollment.status == EnrollmentStatus.PENDING.value,
                    BiometricEnrollment.photo_refs == record.photo_refs,
                )
                .update(
                    {
                        "status": EnrollmentStatus.ENROLLED.value,
                        "template": encode_template(template),
                        "template_version": self._generator.version,
                        "updated_at": now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                logger.info(
                    "Enrollment changed while generating its template; not written",
                    extra={"event_type": "template_worker_record_stale", "enrollment_id": record.id},
                )
                return SKIPPED

            db.refresh(record)
            refresh_biometric_summary(db, record.tenant_id, record.user_id, record=record)
            db.commit()

            logger.info(
                "Enrollment template generated",
                extra={
                    "event_type": "template_worker_record_enrolled",
                    "enrollment_id": record.id,
                    "user_id": record.user_id,
                    "photo_count": len(photos),
                    "template_version": self._generator.version,
                },
            )
            return ENROLLED


# Singleton instance
_template_worker: Optional[BiometricTemplateWorker] = None


def get_template_worker() -> BiometricTemplateWorker:
    """Get the singleton BiometricTemplateWorker instance."""
    global _template_worker
    if _template_worker is None:
        _template_worker = BiometricTemplateWorker()
    return _template_worker


async def initialize_template_worker() -> Optional[BiometricTemplateWorker]:
    """
    Start the template worker if enabled.

    Called at application startup.
    """
    if not settings.BIOMETRIC_WORKER_ENABLED:
        logger.info(
            "Biometric template worker disabled in settings",
            extra={"event_type": "template_worker_initialized", "enabled": False},
        )
        return None

    worker = get_template_worker()
    worker.start()
    logger.info(
        "Biometric template worker initialized",
        extra={"event_type": "template_worker_initialized", "enabled": True},
    )
    return worker


async def shutdown_template_worker() -> None:
    """
    Stop the template worker and drain in-flight records.

    Called at application shutdown.
    """
    global _template_worker
    if _template_worker is not None:
        await _template_worker.stop()
        _template_worker = None
    logger.info("Biometric template worker shutdown complete")
