"""
Exam Session State Machine

Drives one learner through one exam: welcome -> exam -> results, with
results -> welcome via retake. Owns the countdown, the answer store and the
submit pipeline (media upload -> submission building -> record -> grade ->
certificate). It is the only component that changes phase based on errors.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Optional, Union

from config import Settings, get_settings
from assessment.clients.base import ExamBackend
from assessment.exceptions import (
    ExamBlockedError,
    ExamSessionError,
    NotReadyError,
    RetakeInvalidationError,
    StateTransitionError,
    SubmissionError,
)
from assessment.models.answers import Answer, MediaHandle
from assessment.models.exam import ExamBundle, Question
from assessment.models.grading import Certificate, ExamResult, GradeResult, UploadWarning
from assessment.models.session_state import (
    LoadResult,
    RetakeDecision,
    SessionAction,
    SessionEvent,
    SessionPhase,
    SessionSnapshot,
)
from assessment.services.answer_store import AnswerStore
from assessment.services.certificate_service import CertificateService
from assessment.services.completion_cache import CompletionCache
from assessment.services.countdown_timer import CountdownTimer
from assessment.services.grading_service import GradingService
from assessment.services.media_pipeline import MediaCapturePipeline
from assessment.services.retake_policy import RetakePolicy
from assessment.services.submission_builder import build_submission
from assessment.utils.formatting import format_time, progress_label, progress_percentage

logger = logging.getLogger("assessment.exam_session")

SessionListener = Callable[[SessionEvent], None]

ALREADY_COMPLETED_NOTICE = "You have already completed this exam."
LOAD_FAILED_NOTICE = "Failed to load exam questions. Please try again later."
NO_QUESTIONS_NOTICE = "No questions are available for this exam."


class ExamSession:
    """State machine for a single (learner, exam) attempt cycle."""

    def __init__(
        self,
        exam_id: str,
        learner_id: str,
        backend: ExamBackend,
        settings: Optional[Settings] = None,
        completion_cache: Optional[CompletionCache] = None,
        issue_certificate: Optional[bool] = None,
        listeners: Optional[list[SessionListener]] = None,
        session_id: Optional[str] = None,
    ):
        self.exam_id = str(exam_id)
        self.learner_id = str(learner_id)
        self.session_id = session_id or f"exam_{uuid.uuid4().hex[:12]}"
        self.settings = settings or get_settings()
        self.backend = backend
        self.completion_cache = completion_cache
        self.issue_certificate = (
            self.settings.issue_certificates if issue_certificate is None else issue_certificate
        )

        self.grading = GradingService(backend)
        self.certificates = CertificateService(backend)
        self.retake_policy = RetakePolicy(backend, self.grading, self.certificates)
        self.media = MediaCapturePipeline(backend, on_warning=self._on_upload_warning)
        self.timer = CountdownTimer(
            on_expire=self._on_timer_expired,
            on_tick=self._on_tick,
            tick_seconds=self.settings.timer_tick_seconds,
        )

        self.phase: SessionPhase = "welcome"
        self.bundle: Optional[ExamBundle] = None
        self.answers: Optional[AnswerStore] = None
        self.current_index = 0
        self.decision: Optional[RetakeDecision] = None
        self.load_result: Optional[LoadResult] = None
        self.result: Optional[ExamResult] = None
        self.certificate: Optional[Certificate] = None
        self.attempt_closed = False
        self.closed = False
        self.last_error: Optional[ExamSessionError] = None
        self.submit_runs = 0

        self._submit_task: Optional[asyncio.Task] = None
        self._auto_submit_task: Optional[asyncio.Task] = None
        self._listeners: list[SessionListener] = list(listeners or [])

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for lifecycle events. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_type: str, **payload: Any) -> None:
        event = SessionEvent(type=event_type, session_id=self.session_id, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Session listener failed on {event_type}: {e}")

    def _set_phase(self, phase: SessionPhase, reason: str) -> None:
        previous = self.phase
        self.phase = phase
        logger.info(json.dumps({
            "session_id": self.session_id,
            "event": "phase_changed",
            "from": previous,
            "to": phase,
            "reason": reason,
        }))
        self._emit("phase_changed", from_phase=previous, to_phase=phase, reason=reason)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> LoadResult:
        """
        Run the entry check and load the exam in one step.

        Nothing is applied to the session unless every step succeeds.
        """
        if self.phase == "exam":
            raise StateTransitionError(self.phase, "welcome", "cannot reload during an exam")

        try:
            decision = await self.retake_policy.evaluate(self.exam_id, self.learner_id)
        except Exception as e:
            logger.error(f"Entry check failed for exam {self.exam_id}: {e}")
            return self._finish_load(LoadResult(status="error", message=LOAD_FAILED_NOTICE))

        if self.completion_cache is not None:
            self.completion_cache.reconcile_exam(
                self.learner_id, self.exam_id, decision.prior_grade is not None
            )

        if decision.entry == "blocked":
            self.decision = decision
            self.certificate = decision.certificate
            self.result = None
            if self.phase != "results":
                self._set_phase("results", "already_completed")
            return self._finish_load(LoadResult(
                status="blocked", decision=decision, message=ALREADY_COMPLETED_NOTICE
            ))

        try:
            bundle = await self.backend.get_exam(self.exam_id)
        except Exception as e:
            logger.error(f"Error fetching exam questions for exam {self.exam_id}: {e}")
            return self._finish_load(LoadResult(status="error", decision=decision, message=LOAD_FAILED_NOTICE))

        if bundle.question_count == 0:
            return self._finish_load(LoadResult(status="error", decision=decision, message=NO_QUESTIONS_NOTICE))

        self.bundle = bundle
        self.answers = AnswerStore(bundle)
        self.current_index = 0
        self.decision = decision
        self.certificate = decision.certificate
        self.result = None

        target: SessionPhase = "results" if decision.entry == "retake" else "welcome"
        if self.phase != target:
            self._set_phase(target, f"loaded_{decision.entry}")
        return self._finish_load(LoadResult(status="ready", decision=decision))

    def _finish_load(self, result: LoadResult) -> LoadResult:
        self.load_result = result
        self._emit("loaded", status=result.status, message=result.message)
        return result

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """welcome -> exam. Starts the countdown at the exam duration."""
        if self.phase != "welcome":
            raise StateTransitionError(self.phase, "exam", "start is only available on the welcome screen")
        if self.decision is not None and self.decision.entry == "blocked":
            prior = self.decision.prior_grade
            raise ExamBlockedError(self.exam_id, prior.score if prior else 0.0)
        if self.bundle is None or self.bundle.question_count == 0:
            raise NotReadyError(self.exam_id)

        self.answers = AnswerStore(self.bundle)
        self.current_index = 0
        self.result = None
        self.attempt_closed = False
        self.last_error = None
        self.timer.start(self.bundle.exam.duration_seconds)
        self._set_phase("exam", "start")

    def _require_exam(self, action: str) -> AnswerStore:
        if self.phase != "exam" or self.answers is None:
            raise StateTransitionError(self.phase, self.phase, f"{action} is only available during the exam")
        if self.attempt_closed:
            raise StateTransitionError(self.phase, self.phase, "the attempt is closed")
        return self.answers

    def answer(self, question_id: str, value: Union[str, int, None]) -> Optional[Answer]:
        """Record or clear a multiple choice / free text answer."""
        return self._require_exam("answer").record(question_id, value)

    def capture_media(self, question_id: str, handle: MediaHandle) -> Optional[MediaHandle]:
        """Stage an image for an image upload question, replacing any earlier capture."""
        return self._require_exam("capture_media").capture_media(question_id, handle)

    def next(self) -> int:
        self._require_navigation()
        if self.current_index < self.bundle.question_count - 1:
            self.current_index += 1
        return self.current_index

    def previous(self) -> int:
        self._require_navigation()
        if self.current_index > 0:
            self.current_index -= 1
        return self.current_index

    def _require_navigation(self) -> None:
        if self.phase != "exam" or self.bundle is None:
            raise StateTransitionError(self.phase, self.phase, "navigation is only available during the exam")

    @property
    def current_question(self) -> Optional[Question]:
        if self.bundle is None:
            return None
        return self.bundle.question_at(self.current_index)

    @property
    def finished(self) -> bool:
        """True once this session can no longer serve a new attempt."""
        return self.closed or self.attempt_closed or self.result is not None

    @property
    def submitting(self) -> bool:
        return self._submit_task is not None and not self._submit_task.done()

    # ------------------------------------------------------------------
    # Submit pipeline
    # ------------------------------------------------------------------

    async def submit(self, auto: bool = False) -> Optional[ExamResult]:
        """
        exam -> results.

        A trigger arriving while a submit is in flight joins it (manual) or is
        dropped (auto); the pipeline never runs twice concurrently.

        Returns:
            ExamResult on success; None for a coalesced or stale auto-submit

        Raises:
            SubmissionError: The pipeline failed; the session stays in `exam`
        """
        if self.phase != "exam":
            if auto:
                return None
            raise StateTransitionError(self.phase, "results", "submit is only available during the exam")

        if self.submitting:
            self._emit("submit_coalesced", auto=auto)
            logger.info(json.dumps({"session_id": self.session_id, "event": "submit_coalesced", "auto": auto}))
            if auto:
                return None
            return await asyncio.shield(self._submit_task)

        if self.attempt_closed:
            if auto:
                return None
            raise StateTransitionError(self.phase, "results", "the attempt is closed")

        self._submit_task = asyncio.get_running_loop().create_task(self._run_submit(auto))
        return await asyncio.shield(self._submit_task)

    async def _run_submit(self, auto: bool) -> ExamResult:
        self.submit_runs += 1
        self.answers.freeze()
        self._emit("submit_started", auto=auto, run=self.submit_runs)
        logger.info(json.dumps({
            "session_id": self.session_id,
            "event": "submit_started",
            "auto": auto,
            "run": self.submit_runs,
            "answered": self.answers.answered_count,
        }))

        try:
            resolution = await self.media.resolve(self.exam_id, self.answers)
            entries = build_submission(self.bundle.questions, self.answers.answers(), resolution.paths)
            grade = await self.grading.submit_and_grade(
                self.exam_id, self.learner_id, entries, terminal=auto or self.timer.expired
            )
        except SubmissionError as e:
            self._fail_submit(e)
            raise
        except Exception as e:
            err = SubmissionError(f"Submission pipeline failed: {e}")
            self._fail_submit(err)
            raise err from e

        self.timer.cancel()
        certificate = await self.certificates.issue_if_eligible(self.learner_id, grade, self.issue_certificate)

        result = ExamResult(
            grade=grade,
            certificate=certificate,
            upload_warnings=resolution.warnings,
            entry_count=len(entries),
            auto_submitted=auto,
        )
        self._complete(result)
        return result

    def _fail_submit(self, error: SubmissionError) -> None:
        error.terminal = error.terminal or self.timer.expired
        self.last_error = error
        if error.terminal:
            self.attempt_closed = True
            self.timer.cancel()
        else:
            self.answers.unfreeze()
        logger.error(json.dumps({
            "session_id": self.session_id,
            "event": "submit_failed",
            "terminal": error.terminal,
            "error": error.message,
        }))
        self._emit("submit_failed", message=error.user_message, error=error.message, terminal=error.terminal)

    def _complete(self, result: ExamResult) -> None:
        grade = result.grade
        self.result = result
        self.last_error = None
        if self.closed:
            # Abandoned mid-submit: the server keeps the grade, the session stays put
            logger.info(json.dumps({
                "session_id": self.session_id,
                "event": "submitted_after_abandon",
                "score": grade.score,
            }))
            return
        if result.certificate.issued and grade.curriculum_unit_id:
            self.certificate = Certificate(
                learner_id=self.learner_id,
                curriculum_unit_id=grade.curriculum_unit_id,
                url=result.certificate.url,
            )
        self.decision = RetakeDecision(
            entry=self.retake_policy.decide(grade), prior_grade=grade, certificate=self.certificate
        )
        if self.completion_cache is not None:
            self.completion_cache.mark_completed(self.learner_id, self.exam_id)

        self._emit("submitted", score=grade.score, level=grade.level_label, entries=result.entry_count)
        if result.certificate.issued:
            self._emit("certificate_issued", url=result.certificate.url)
        elif result.certificate.error:
            self._emit("certificate_failed", message=result.certificate.error)
        self._set_phase("results", "auto_submit" if result.auto_submitted else "submit")

    def _on_timer_expired(self) -> None:
        self._emit("timer_expired")
        if self.submitting:
            self._emit("submit_coalesced", auto=True)
            logger.info(json.dumps({"session_id": self.session_id, "event": "auto_submit_coalesced"}))
            return
        self._auto_submit_task = asyncio.get_running_loop().create_task(self._auto_submit())

    async def _auto_submit(self) -> None:
        try:
            await self.submit(auto=True)
        except SubmissionError as e:
            logger.error(f"Auto-submit failed for session {self.session_id}: {e.message}")

    def _on_tick(self, remaining: int) -> None:
        self._emit("tick", remaining=remaining)

    def _on_upload_warning(self, warning: UploadWarning) -> None:
        self._emit("upload_warning", question_id=warning.question_id, message=warning.message)

    # ------------------------------------------------------------------
    # Retake
    # ------------------------------------------------------------------

    @property
    def latest_grade(self) -> Optional[GradeResult]:
        if self.result is not None:
            return self.result.grade
        if self.decision is not None:
            return self.decision.prior_grade
        return None

    @property
    def retake_available(self) -> bool:
        return self.phase == "results" and self.decision is not None and self.decision.retake_allowed

    async def retake(self) -> None:
        """
        results -> welcome.

        Invalidates the prior attempt (certificate first, then submission) and
        resets all session-local state. On failure the session stays in
        `results` with its prior grade.
        """
        if self.phase != "results":
            raise StateTransitionError(self.phase, "welcome", "retake is only available on the results screen")
        if not self.retake_available:
            raise StateTransitionError(self.phase, "welcome", "retake is not allowed for this result")

        try:
            await self.retake_policy.invalidate(self.exam_id, self.learner_id, self.latest_grade)
        except RetakeInvalidationError as e:
            if e.certificate_deleted:
                self.certificate = None
                if self.decision is not None:
                    self.decision = self.decision.model_copy(update={"certificate": None})
            self.last_error = e
            self._emit("retake_failed", step=e.step, message=e.user_message)
            raise

        self._reset_attempt()
        if self.completion_cache is not None:
            self.completion_cache.forget(self.learner_id, self.exam_id)
        self._emit("retake_completed")
        self._set_phase("welcome", "retake")

    def _reset_attempt(self) -> None:
        self.timer.reset()
        if self.answers is not None:
            self.answers.clear()
        self.current_index = 0
        self.result = None
        self.certificate = None
        self.decision = RetakeDecision(entry="fresh")
        self.attempt_closed = False
        self.last_error = None
        self._submit_task = None
        self._auto_submit_task = None

    async def abandon(self) -> None:
        """
        Leave the session: stop the countdown and drop captured answers.

        A submit already in flight is not cancelled. Its grade is still
        recorded server side, but the abandoned session neither moves to
        `results` nor writes the completion cache.
        """
        self.timer.cancel()
        if self.answers is not None and not self.submitting:
            self.answers.clear()
        self.closed = True
        self._emit("abandoned", phase=self.phase)
        logger.info(json.dumps({"session_id": self.session_id, "event": "abandoned", "phase": self.phase}))

    # ------------------------------------------------------------------
    # Read model
    # ------------------------------------------------------------------

    def available_actions(self) -> list[SessionAction]:
        if self.closed:
            return []
        if self.phase == "welcome":
            ready = self.bundle is not None and (self.decision is None or self.decision.entry != "blocked")
            return ["start"] if ready else []
        if self.phase == "exam":
            if self.attempt_closed or self.submitting:
                return []
            return ["answer", "capture_media", "next", "previous", "submit"]
        return ["retake"] if self.retake_available else []

    def _notice(self) -> Optional[str]:
        if self.load_result is not None and self.load_result.status != "ready" and self.phase != "exam":
            return self.load_result.message
        if self.last_error is not None:
            return self.last_error.user_message
        if self.result is not None and self.result.certificate.error:
            return self.result.certificate.error
        return None

    def _result_summary(self) -> Optional[dict]:
        if self.result is not None:
            return self.result.summary()
        grade = self.latest_grade
        if grade is None:
            return None
        summary = ExamResult(grade=grade).summary()
        if self.certificate is not None:
            summary["certificate_url"] = self.certificate.url
        return summary

    def snapshot(self) -> SessionSnapshot:
        count = self.bundle.question_count if self.bundle else 0
        current = self.current_question
        remaining = self.timer.remaining if self.phase == "exam" else (
            self.bundle.exam.duration_seconds if self.bundle else 0
        )
        return SessionSnapshot(
            session_id=self.session_id,
            exam_id=self.exam_id,
            learner_id=self.learner_id,
            phase=self.phase,
            load_status=self.load_result.status if self.load_result else None,
            actions=self.available_actions(),
            exam_name=self.bundle.exam.name if self.bundle else "",
            exam_description=self.bundle.exam.description if self.bundle else "",
            question_count=count,
            total_points=self.bundle.total_points if self.bundle else 0.0,
            current_index=self.current_index,
            current_question_id=current.id if current else None,
            progress_label=progress_label(self.current_index, count),
            progress_percentage=progress_percentage(self.current_index, count),
            answered_count=self.answers.answered_count if self.answers else 0,
            time_remaining_seconds=remaining,
            time_remaining_label=format_time(remaining),
            submitting=self.submitting,
            attempt_closed=self.attempt_closed,
            notice=self._notice(),
            result=self._result_summary() if self.phase == "results" else None,
        )


async def load_session(
    exam_id: str,
    learner_id: str,
    backend: ExamBackend,
    **kwargs: Any,
) -> tuple[ExamSession, LoadResult]:
    """Create a session and run its entry check and exam load as one step."""
    session = ExamSession(exam_id, learner_id, backend, **kwargs)
    result = await session.load()
    return session, result
