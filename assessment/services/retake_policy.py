"""
Retake Policy

Decides at entry whether a learner gets a fresh attempt, a retake, or is
blocked, and runs the ordered invalidation of a prior attempt:
certificate first, then the submission/grade record.
"""

import json
import logging
from typing import Optional

from assessment.exceptions import RetakeInvalidationError
from assessment.clients.base import ExamBackend
from assessment.models.grading import GradeResult
from assessment.models.session_state import EntryDecision, RetakeDecision
from assessment.services.certificate_service import CertificateService
from assessment.services.grading_service import GradingService

logger = logging.getLogger("assessment.retake_policy")


class RetakePolicy:
    """Entry gate and invalidation sequence for exam attempts."""

    def __init__(
        self,
        backend: ExamBackend,
        grading: Optional[GradingService] = None,
        certificates: Optional[CertificateService] = None,
    ):
        self.backend = backend
        self.grading = grading or GradingService(backend)
        self.certificates = certificates or CertificateService(backend)

    @staticmethod
    def decide(grade: Optional[GradeResult]) -> EntryDecision:
        """
        Map the latest grade onto an entry decision.

        Only a zero score re-opens the exam. Any other existing score,
        including failing scores above zero, counts as completed.
        """
        if grade is None:
            return "fresh"
        if grade.is_zero:
            return "retake"
        return "blocked"

    async def evaluate(self, exam_id: str, learner_id: str) -> RetakeDecision:
        """
        Check for a prior grade and the certificate it may back.

        Raises:
            Exception: Errors from the grade lookup propagate; the caller
                reports them as a load error.
        """
        grade = await self.grading.fetch_grade(exam_id, learner_id)
        entry = self.decide(grade)

        certificate = None
        if grade is not None and grade.curriculum_unit_id:
            try:
                certificate = await self.certificates.find(learner_id, grade.curriculum_unit_id)
            except Exception as e:
                logger.warning(f"Error checking existing certificate for learner {learner_id}: {e}")

        logger.info(json.dumps({
            "event": "entry_decision",
            "exam_id": exam_id,
            "learner_id": learner_id,
            "entry": entry,
            "prior_score": grade.score if grade else None,
            "has_certificate": certificate is not None,
        }))
        return RetakeDecision(entry=entry, prior_grade=grade, certificate=certificate)

    async def invalidate(self, exam_id: str, learner_id: str, prior_grade: GradeResult) -> bool:
        """
        Delete the prior attempt so a new one can begin.

        Order: certificate for the grade's curriculum unit (if any), then the
        submission. Nothing is rolled back; any failing step aborts the rest.

        Returns:
            True when a certificate was deleted

        Raises:
            RetakeInvalidationError: A step failed
        """
        unit_id = prior_grade.curriculum_unit_id
        certificate_deleted = False

        if unit_id:
            try:
                certificate = await self.certificates.find(learner_id, unit_id)
            except Exception as e:
                raise RetakeInvalidationError("certificate_lookup", str(e)) from e

            if certificate is not None:
                try:
                    await self.certificates.delete(learner_id, unit_id)
                except Exception as e:
                    raise RetakeInvalidationError("delete_certificate", str(e)) from e
                certificate_deleted = True

        try:
            await self.backend.delete_submission(exam_id)
        except Exception as e:
            logger.error(f"Error deleting submission for exam {exam_id}: {e}")
            raise RetakeInvalidationError(
                "delete_submission", str(e), certificate_deleted=certificate_deleted
            ) from e

        logger.info(json.dumps({
            "event": "attempt_invalidated",
            "exam_id": exam_id,
            "learner_id": learner_id,
            "certificate_deleted": certificate_deleted,
        }))
        return certificate_deleted
