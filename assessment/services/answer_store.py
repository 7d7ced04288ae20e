"""
Answer Store

In-memory mapping of question id to captured answer for one attempt.
Unanswered questions are absent. Mutation is refused while a submit runs.
"""

import logging
from typing import Optional, Union

from assessment.exceptions import AnswerValidationError, StateTransitionError
from assessment.models.answers import Answer, MediaHandle
from assessment.models.exam import ExamBundle, Question

logger = logging.getLogger("assessment.answer_store")


class AnswerStore:
    """Holds the learner's answers for a single exam attempt."""

    def __init__(self, bundle: ExamBundle):
        self.bundle = bundle
        self._answers: dict[str, Answer] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def unfreeze(self) -> None:
        self._frozen = False

    def _check_mutable(self, action: str) -> None:
        if self._frozen:
            raise StateTransitionError("exam", "exam", f"cannot {action} while a submission is in progress")

    def _question(self, question_id: str) -> Question:
        question = self.bundle.get_question(str(question_id))
        if question is None:
            raise AnswerValidationError(str(question_id), "question is not part of this exam")
        return question

    def record(self, question_id: str, value: Union[str, int, None]) -> Optional[Answer]:
        """
        Record a multiple choice or free text answer.

        Args:
            question_id: Question being answered
            value: Selected option id, or the raw text

        Returns:
            The stored Answer, or None when the value cleared the answer
        """
        self._check_mutable("change answers")
        question = self._question(question_id)

        if question.answer_kind == "image_upload":
            raise AnswerValidationError(question.id, "image answers are captured as media")

        if value is None or (question.answer_kind == "free_text" and str(value) == ""):
            self._answers.pop(question.id, None)
            return None

        if question.answer_kind == "multiple_choice":
            option_id = str(value)
            if option_id not in question.option_ids():
                raise AnswerValidationError(question.id, f"unknown option {option_id}")
            answer = Answer(question_id=question.id, kind="multiple_choice", option_id=option_id)
        else:
            if not isinstance(value, str):
                raise AnswerValidationError(question.id, "free text answers must be strings")
            answer = Answer(question_id=question.id, kind="free_text", text=value)

        self._answers[question.id] = answer
        return answer

    def capture_media(self, question_id: str, handle: MediaHandle) -> Optional[MediaHandle]:
        """
        Stage a local image for an image upload question.

        Returns:
            The handle that was replaced, if any
        """
        self._check_mutable("capture media")
        question = self._question(question_id)
        if question.answer_kind != "image_upload":
            raise AnswerValidationError(question.id, "question does not accept images")

        previous = self._answers.get(question.id)
        self._answers[question.id] = Answer(question_id=question.id, kind="image_upload", media=handle)
        discarded = previous.media if previous else None
        if discarded is not None:
            logger.debug(f"Discarded previous capture for question {question.id}")
        return discarded

    def set_remote_path(self, question_id: str, remote_path: str) -> None:
        """Remember an uploaded path so a retried submit does not upload again."""
        answer = self._answers.get(question_id)
        if answer is not None and answer.kind == "image_upload":
            self._answers[question_id] = answer.model_copy(update={"remote_path": remote_path})

    def get(self, question_id: str) -> Optional[Answer]:
        return self._answers.get(str(question_id))

    def is_answered(self, question_id: str) -> bool:
        return str(question_id) in self._answers

    def answers(self) -> dict[str, Answer]:
        return dict(self._answers)

    def pending_media(self) -> dict[str, MediaHandle]:
        """Captured images that have not been uploaded yet."""
        return {
            qid: answer.media
            for qid, answer in self._answers.items()
            if answer.kind == "image_upload" and answer.media is not None and not answer.remote_path
        }

    @property
    def answered_count(self) -> int:
        return len(self._answers)

    def clear(self) -> None:
        self._answers.clear()
        self._frozen = False
