"""
Exam Backend Interface

Collaborator contract consumed by the session engine. Implementations may
sit on any transport; the engine only depends on this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from assessment.models.exam import ExamBundle
from assessment.models.answers import SubmissionEntry
from assessment.models.grading import Certificate, GradeResult


class ExamBackend(ABC):
    """Exam, grading and certificate operations of the platform backend."""

    @abstractmethod
    async def get_exam(self, exam_id: str) -> ExamBundle:
        """Load an exam and its ordered questions."""

    @abstractmethod
    async def record_submission(self, exam_id: str, entries: list[SubmissionEntry]) -> None:
        """Record the submission. Idempotent per exam and learner."""

    @abstractmethod
    async def upload_answer_media(
        self,
        exam_id: str,
        question_id: str,
        content: bytes,
        filename: str = "answer.jpg",
        content_type: str = "image",
    ) -> str:
        """Upload an answer image and return its remote path."""

    @abstractmethod
    async def compute_grade(self, exam_id: str, learner_id: str) -> Optional[GradeResult]:
        """Return the grade for (exam, learner), or None when nothing is recorded."""

    @abstractmethod
    async def delete_submission(self, exam_id: str) -> None:
        ...

    @abstractmethod
    async def issue_certificate(self, learner_id: str, curriculum_unit_id: str) -> Optional[str]:
        """Issue a certificate and return its URL."""

    @abstractmethod
    async def list_certificates(self, learner_id: str) -> list[Certificate]:
        ...

    @abstractmethod
    async def delete_certificate(self, learner_id: str, curriculum_unit_id: str) -> None:
        ...
