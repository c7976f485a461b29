"""
Biometric Identification Service

Scores a query photo against every enrolled template of a tenant and
returns the best candidate only when it clears the match threshold.

Result reasons:
    no_enrolled_users  no enrolled candidates (after the optional group filter)
    no_match           best score below threshold (candidate is NOT reported)
    matched            best candidate at or above threshold

The query photo goes through the same TemplateGenerator as the template worker;
templates produced by a different generator version are not comparable and
are excluded.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from sqlalchemy.orm import Session, undefer

from app.core.config import settings
from app.core.metrics import record_identification
from app.models.biometric_enrollment import BiometricEnrollment, EnrollmentStatus
from app.services.domain_mutators import InvalidEventPayloadError, find_group
from app.services.template_service import (
    TemplateGenerator,
    batch_cosine_similarity,
    decode_template,
    get_template_generator,
)

logger = logging.getLogger(__name__)

NO_ENROLLED_USERS = "no_enrolled_users"
NO_MATCH = "no_match"
MATCHED = "matched"


@dataclass
class IdentificationResult:
    matched_user_id: Optional[str]
    score: Optional[float]
    reason: str
    candidates: int = 0


class IdentificationService:
    """
    Nearest-neighbor matcher over enrolled templates.

    Attributes:
        threshold: Minimum cosine similarity for a positive identification
    """

    def __init__(
        self,
        generator: Optional[TemplateGenerator] = None,
        threshold: Optional[float] = None,
    ):
        self._generator = generator or get_template_generator()
        self.threshold = settings.BIOMETRIC_MATCH_THRESHOLD if threshold is None else threshold

    def identify(
        self,
        db: Session,
        tenant_id: str,
        photo_bytes: bytes,
        group_id: Optional[str] = None,
    ) -> IdentificationResult:
        """
        Identify the person in a query photo.

        Args:
            db: SQLAlchemy database session
            tenant_id: Tenant whose enrollments are searched
            photo_bytes: Raw image bytes
            group_id: Optional group restricting candidates to its members

        Raises:
            InvalidEventPayloadError: Empty photo
            EntityNotFoundError: group_id not in tenant
        """
        if not photo_bytes:
            raise InvalidEventPayloadError("photo is required")

        member_ids = None
        if group_id:
            member_ids = find_group(db, tenant_id, group_id).member_ids

        query = (
            db.query(BiometricEnrollment)
            .options(undefer(BiometricEnrollment.template))
            .filter(
                BiometricEnrollment.tenant_id == tenant_id,
                BiometricEnrollment.status == EnrollmentStatus.ENROLLED.value,
                BiometricEnrollment.template.isnot(None),
                BiometricEnrollment.template_version == self._generator.version,
            )
        )
        if member_ids is not None:
            if not member_ids:
                return self._finish(IdentificationResult(None, None, NO_ENROLLED_USERS), group_id)
            query = query.filter(BiometricEnrollment.user_id.in_(member_ids))

        user_ids = []
        vectors = []
        for record in query.all():
            try:
                vector = decode_template(record.template)
            except ValueError:
                logger.warning(
                    "Skipping enrollment with unreadable template",
                    extra={"event_type": "identification_bad_template", "enrollment_id": record.id},
                )
                continue
            user_ids.append(record.user_id)
            vectors.append(vector)

        if not vectors:
            return self._finish(IdentificationResult(None, None, NO_ENROLLED_USERS), group_id)

        target = self._generator.generate([photo_bytes])
        if target is None:
            raise InvalidEventPayloadError("photo is empty")

        scores = batch_cosine_similarity(target, np.vstack(vectors))
        best = int(np.argmax(scores))
        best_score = float(scores[best])

        if best_score < self.threshold:
            result = IdentificationResult(None, None, NO_MATCH, candidates=len(vectors))
            logger.info(
                f"Best candidate score {best_score:.3f} below threshold {self.threshold}",
                extra={"event_type": "identification_below_threshold", "best_score": best_score},
            )
        else:
            result = IdentificationResult(user_ids[best], best_score, MATCHED, candidates=len(vectors))
        return self._finish(result, group_id)

    @staticmethod
    def _finish(result: IdentificationResult, group_id: Optional[str]) -> IdentificationResult:
        record_identification(result.reason)
        logger.info(
            f"Biometric identification: {result.reason}",
            extra={
                "event_type": "biometric_identification",
                "reason": result.reason,
                "matched_user_id": result.matched_user_id,
                "score": result.score,
                "candidates": result.candidates,
                "group_id": group_id,
            },
        )
        return result


# Global singleton instance
_identification_service: Optional[IdentificationService] = None


def get_identification_service() -> IdentificationService:
    """
    Get the global IdentificationService instance.

    Creates the instance on first call (lazy initialization).
    """
    global _identification_service

    if _identification_service is None:
        _identification_service = IdentificationService()
        logger.info(
            "Global IdentificationService instance created",
            extra={"event_type": "identification_service_singleton_created"},
        )

    return _identification_service
