"""Grading integration: record the submission, then fetch the authoritative grade."""

import json
import logging

from assessment.clients.base import ExamBackend
from assessment.exceptions import GradingUnavailableError, SubmissionError
from assessment.models.answers import SubmissionEntry
from assessment.models.grading import GradeResult

logger = logging.getLogger("assessment.grading_service")


class GradingService:
    """Sequential record-then-grade calls against the grading backend."""

    def __init__(self, backend: ExamBackend):
        self.backend = backend

    async def submit_and_grade(
        self,
        exam_id: str,
        learner_id: str,
        entries: list[SubmissionEntry],
        terminal: bool = False,
    ) -> GradeResult:
        """
        Record the entries and compute the grade.

        Args:
            exam_id: Exam being submitted
            learner_id: Learner the grade belongs to
            entries: One entry per question
            terminal: Mark raised errors as final for the attempt (time expired)

        Returns:
            GradeResult from the grading service

        Raises:
            SubmissionError: Recording or grading failed
            GradingUnavailableError: Submission recorded but no grade returned
        """
        try:
            await self.backend.record_submission(exam_id, entries)
        except Exception as e:
            logger.error(f"Recording submission for exam {exam_id} failed: {e}")
            raise SubmissionError(f"Failed to record submission: {e}", terminal=terminal) from e

        try:
            grade = await self.backend.compute_grade(exam_id, learner_id)
        except Exception as e:
            logger.error(f"Computing grade for exam {exam_id} failed: {e}")
            raise SubmissionError(f"Failed to compute grade: {e}", terminal=terminal) from e

        if grade is None:
            logger.error(f"Grade unavailable for exam {exam_id}, learner {learner_id}")
            raise GradingUnavailableError(exam_id, learner_id, terminal=terminal)

        logger.info(json.dumps({
            "event": "graded",
            "exam_id": exam_id,
            "learner_id": learner_id,
            "entries": len(entries),
            "score": grade.score,
            "level": grade.level_label,
        }))
        return grade

    async def fetch_grade(self, exam_id: str, learner_id: str) -> GradeResult | None:
        """Look up an existing grade without submitting. Errors propagate."""
        return await self.backend.compute_grade(exam_id, learner_id)
