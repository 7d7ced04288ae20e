"""
Exam Models

Exam, Question and Option definitions. Immutable for the lifetime of a session.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


AnswerKind = Literal["multiple_choice", "free_text", "image_upload"]

# The backend still reports free text questions as "text_input"
_ANSWER_KIND_ALIASES = {
    "multiple_choice": "multiple_choice",
    "image_upload": "image_upload",
    "free_text": "free_text",
    "text_input": "free_text",
}


def normalize_answer_kind(raw: Optional[str]) -> AnswerKind:
    """Map a backend answer type onto an AnswerKind, defaulting to free text."""
    return _ANSWER_KIND_ALIASES.get((raw or "").strip().lower(), "free_text")


class Option(BaseModel):
    """A selectable choice of a multiple choice question."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    media: Optional[str] = Field(default=None, description="Relative media path of the option image")


class Question(BaseModel):
    """A single prompt with a declared answer kind."""

    model_config = ConfigDict(frozen=True)

    id: str
    prompt_text: str = ""
    media: Optional[str] = Field(default=None, description="Relative media path shown with the prompt")
    media_type: Optional[str] = Field(default=None, description="image or video")
    answer_kind: AnswerKind = "free_text"
    options: tuple[Option, ...] = ()
    points: float = 0.0

    def option_ids(self) -> set[str]:
        return {option.id for option in self.options}


class Exam(BaseModel):
    """A timed set of questions."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    duration_seconds: int = Field(gt=0)
    level: Optional[str] = None
    question_ids: tuple[str, ...] = ()


class ExamBundle(BaseModel):
    """An exam together with its ordered questions, loaded once per session."""

    model_config = ConfigDict(frozen=True)

    exam: Exam
    questions: tuple[Question, ...] = ()

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def total_points(self) -> float:
        return sum(q.points for q in self.questions)

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def question_at(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None
