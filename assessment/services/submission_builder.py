"""Submission building: answers + resolved media -> one entry per question."""

from typing import Mapping, Optional, Sequence

from assessment.models.answers import Answer, SubmissionEntry
from assessment.models.exam import Question


def build_entry(question: Question, answer: Optional[Answer], media_path: Optional[str]) -> SubmissionEntry:
    if question.answer_kind == "image_upload":
        return SubmissionEntry(question_id=question.id, answer="", media=media_path)

    if question.answer_kind == "multiple_choice":
        selected = answer.option_id if answer is not None else None
        return SubmissionEntry(question_id=question.id, answer=str(selected) if selected else "")

    text = answer.text if answer is not None else None
    return SubmissionEntry(question_id=question.id, answer=text or "")


def build_submission(
    questions: Sequence[Question],
    answers: Mapping[str, Answer],
    media_paths: Mapping[str, Optional[str]],
) -> list[SubmissionEntry]:
    """
    Build the submission payload.

    Every question yields exactly one entry, in exam order, answered or not.
    Pure: performs no I/O and does not mutate its inputs.
    """
    return [
        build_entry(question, answers.get(question.id), media_paths.get(question.id))
        for question in questions
    ]
