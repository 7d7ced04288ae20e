"""
Custom Exception Hierarchy for the Exam Session Engine

Exception Hierarchy:
    ExamSessionError (base)
    ├── StateError
    │   ├── NotReadyError
    │   ├── ExamBlockedError
    │   ├── StateTransitionError
    │   └── AnswerValidationError
    ├── UploadError
    ├── SubmissionError
    │   └── GradingUnavailableError
    ├── CertificateError
    ├── RetakeInvalidationError
    ├── BackendError
    └── SessionNotFoundError
"""

from typing import Optional

from fastapi import HTTPException, status


class ExamSessionError(Exception):
    """Base exception for all exam session errors."""

    user_message = "Something went wrong. Please try again."
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.http_status,
            detail={
                "message": self.user_message,
                "error": self.message,
                "type": type(self).__name__,
            },
        )


# State Errors

class StateError(ExamSessionError):
    """Base exception for state machine errors."""

    http_status = status.HTTP_409_CONFLICT


class NotReadyError(StateError):
    """Raised when an exam is started before its questions are loaded."""

    user_message = "The exam is still loading. Please wait a moment and try again."

    def __init__(self, exam_id: str, reason: str = "exam and questions are not loaded"):
        super().__init__(f"Exam {exam_id} not ready: {reason}")
        self.exam_id = exam_id
        self.reason = reason


class ExamBlockedError(StateError):
    """Raised when a learner tries to enter an exam they have already completed."""

    user_message = "You have already completed this exam."

    def __init__(self, exam_id: str, score: float):
        super().__init__(f"Exam {exam_id} already completed with score {score}")
        self.exam_id = exam_id
        self.score = score


class StateTransitionError(StateError):
    """Raised when an action is not valid in the current phase."""

    user_message = "That action is not available right now."

    def __init__(self, from_state: str, to_state: str, reason: str):
        message = f"Invalid state transition from '{from_state}' to '{to_state}': {reason}"
        super().__init__(message)
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason


class AnswerValidationError(StateError):
    """Raised when an answer does not fit its question."""

    user_message = "That answer could not be recorded."
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, question_id: str, reason: str):
        super().__init__(f"Invalid answer for question {question_id}: {reason}")
        self.question_id = question_id
        self.reason = reason


# Media Errors

class UploadError(ExamSessionError):
    """A single answer image failed to upload. Contained by the media pipeline."""

    user_message = "Failed to upload image for a question. Please try again."
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, question_id: str, reason: str):
        super().__init__(f"Upload failed for question {question_id}: {reason}")
        self.question_id = question_id
        self.reason = reason


# Submission Errors

class SubmissionError(ExamSessionError):
    """Recording the submission or computing the grade failed."""

    user_message = "Your answers are safe. Failed to submit exam, please try submitting again."
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, terminal: bool = False, details: Optional[dict] = None):
        super().__init__(message, details)
        self.terminal = terminal


class GradingUnavailableError(SubmissionError):
    """The submission was recorded but no grade came back."""

    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, exam_id: str, learner_id: str, terminal: bool = False):
        super().__init__(
            f"No grade available for exam {exam_id} and learner {learner_id}",
            terminal=terminal,
        )
        self.exam_id = exam_id
        self.learner_id = learner_id


# Certificate Errors

class CertificateError(ExamSessionError):
    """Certificate issuance failed after a passing grade. Never fatal to the result."""

    user_message = "Your result is saved, but your certificate wasn't generated."
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, learner_id: str, curriculum_unit_id: Optional[str], reason: str):
        super().__init__(
            f"Certificate issuance failed for learner {learner_id}, unit {curriculum_unit_id}: {reason}"
        )
        self.learner_id = learner_id
        self.curriculum_unit_id = curriculum_unit_id
        self.reason = reason


# Retake Errors

class RetakeInvalidationError(ExamSessionError):
    """A step of the retake invalidation sequence failed."""

    user_message = "Failed to delete previous submission. Please try again."
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, step: str, reason: str, certificate_deleted: bool = False):
        super().__init__(f"Retake aborted at '{step}': {reason}")
        self.step = step
        self.reason = reason
        self.certificate_deleted = certificate_deleted


# Collaborator Errors

class BackendError(ExamSessionError):
    """Raised when a call to the exam backend fails."""

    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None):
        message = f"Backend call '{operation}' failed: {reason}"
        if status_code is not None:
            message += f" (status {status_code})"
        super().__init__(message)
        self.operation = operation
        self.reason = reason
        self.status_code = status_code


class SessionNotFoundError(ExamSessionError):
    """Raised when an exam session is not registered."""

    user_message = "Exam session not found."
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, session_id: str):
        super().__init__(f"Exam session not found: {session_id}")
        self.session_id = session_id

