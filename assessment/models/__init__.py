"""Exam session models."""
from assessment.models.exam import AnswerKind, Option, Question, Exam, ExamBundle, normalize_answer_kind
from assessment.models.answers import MediaHandle, Answer, SubmissionEntry
from assessment.models.grading import (
    GradeResult,
    Certificate,
    CertificateOutcome,
    UploadWarning,
    ExamResult,
    level_for_score,
    describe_level,
)
from assessment.models.session_state import (
    SessionPhase,
    EntryDecision,
    RetakeDecision,
    LoadResult,
    SessionEvent,
    SessionSnapshot,
)
