"""Shared builders for exam session tests."""
from unittest.mock import AsyncMock, MagicMock

from assessment.clients.base import ExamBackend
from assessment.models.exam import Exam, ExamBundle, Option, Question
from assessment.models.grading import GradeResult


def make_bundle(duration_seconds: int = 60) -> ExamBundle:
    """Exam with one question of each answer kind."""
    questions = (
        Question(
            id="q1",
            prompt_text="Which sign means hello?",
            answer_kind="multiple_choice",
            options=(Option(id="11", text="Wave"), Option(id="12", text="Nod")),
            points=1,
        ),
        Question(id="q2", prompt_text="Describe the sign for water.", answer_kind="free_text", points=2),
        Question(id="q3", prompt_text="Upload a photo of the sign for thanks.", answer_kind="image_upload", points=3),
    )
    exam = Exam(
        id="exam-1",
        name="Entrance Exam",
        description="Placement assessment",
        duration_seconds=duration_seconds,
        question_ids=tuple(q.id for q in questions),
    )
    return ExamBundle(exam=exam, questions=questions)


def make_backend(bundle: ExamBundle = None, grade: GradeResult = None, prior_grade: GradeResult = None):
    """
    Mock ExamBackend.

    compute_grade returns `prior_grade` on the first call (entry check) and
    `grade` afterwards (after a submission is recorded).
    """
    backend = MagicMock(spec=ExamBackend)
    backend.get_exam = AsyncMock(return_value=bundle or make_bundle())
    backend.record_submission = AsyncMock(return_value=None)
    backend.upload_answer_media = AsyncMock(side_effect=lambda exam_id, qid, content, **kw: f"uploads/{qid}.jpg")
    backend.compute_grade = AsyncMock(side_effect=[prior_grade, grade, grade, grade])
    backend.delete_submission = AsyncMock(return_value=None)
    backend.issue_certificate = AsyncMock(return_value="https://certs.example/c1.pdf")
    backend.list_certificates = AsyncMock(return_value=[])
    backend.delete_certificate = AsyncMock(return_value=None)
    return backend
