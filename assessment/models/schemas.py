"""API request/response models for the exam session endpoints."""
from typing import Optional, Union
from pydantic import BaseModel, Field

from assessment.models.session_state import LoadResult, SessionSnapshot


class CreateExamSessionRequest(BaseModel):
    """Open a session for a learner on an exam."""
    exam_id: str
    learner_id: str
    issue_certificate: Optional[bool] = Field(
        default=None, description="Request a certificate on pass; defaults to settings"
    )


class AnswerRequest(BaseModel):
    """Answer a multiple choice (option id) or free text question. Null clears it."""
    question_id: str
    value: Optional[Union[str, int]] = None


class CreateExamSessionResponse(BaseModel):
    load: LoadResult
    session: SessionSnapshot


class CompletedExamsResponse(BaseModel):
    """Completed exams for a learner listing: server grades plus the local cache."""
    learner_id: str
    completed_exam_ids: list[str] = Field(default_factory=list)
