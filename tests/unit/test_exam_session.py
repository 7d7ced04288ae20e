"""
Tests for assessment/orchestration/exam_session.py

Covers the learner-visible lifecycle: entry decisions, the exam phase,
the submit pipeline (manual, timer driven and coalesced), certificate
outcomes and the retake sequence.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from helpers import make_backend, make_bundle
from assessment.exceptions import (
    AnswerValidationError,
    ExamBlockedError,
    GradingUnavailableError,
    NotReadyError,
    RetakeInvalidationError,
    StateTransitionError,
    SubmissionError,
)
from assessment.models.answers import MediaHandle
from assessment.models.exam import Exam, ExamBundle
from assessment.models.grading import Certificate, GradeResult
from assessment.models.session_state import RetakeDecision
from assessment.orchestration.exam_session import ExamSession, load_session
from assessment.repositories.kv_store import InMemoryKeyValueStore
from assessment.services.completion_cache import CompletionCache


PASSING = GradeResult(score=80, level="Advanced", curriculum_unit_id="u1")
FAILING = GradeResult(score=30, level="Foundation", curriculum_unit_id="u1")
ZERO = GradeResult(score=0, level="Foundation", curriculum_unit_id="u1")


def _session(backend, settings, **kwargs):
    return ExamSession("exam-1", "learner-1", backend, settings=settings, session_id="s-1", **kwargs)


async def _started(backend, settings, **kwargs) -> ExamSession:
    session = _session(backend, settings, **kwargs)
    result = await session.load()
    assert result.status == "ready"
    await session.start()
    return session


def _answer_everything(session: ExamSession):
    session.answer("q1", "11")
    session.answer("q2", "Flat hand tapping the chin")
    session.capture_media("q3", MediaHandle(uri="file:///captures/thanks.jpg", content=b"jpeg-bytes"))


# ===========================================================================
# Loading and entry decisions
# ===========================================================================

class TestLoad:

    @pytest.mark.asyncio
    async def test_fresh_entry_lands_on_welcome(self, fast_settings):
        backend = make_backend()
        session = _session(backend, fast_settings)

        result = await session.load()

        assert result.ready
        assert result.decision.entry == "fresh"
        assert session.phase == "welcome"
        assert session.available_actions() == ["start"]
        assert session.bundle.question_count == 3

    @pytest.mark.asyncio
    async def test_nonzero_prior_score_blocks_entry(self, fast_settings):
        backend = make_backend(prior_grade=FAILING)
        session = _session(backend, fast_settings)

        result = await session.load()

        assert result.status == "blocked"
        assert result.message == "You have already completed this exam."
        assert session.phase == "results"
        assert session.available_actions() == []
        backend.get_exam.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blocked_entry_cannot_start(self, fast_settings):
        backend = make_backend(prior_grade=PASSING)
        session = _session(backend, fast_settings)
        await session.load()

        with pytest.raises(StateTransitionError):
            await session.start()
        assert session.phase == "results"

    @pytest.mark.asyncio
    async def test_blocked_decision_on_welcome_raises_blocked(self, fast_settings):
        session = _session(make_backend(), fast_settings)
        await session.load()
        session.decision = RetakeDecision(entry="blocked", prior_grade=FAILING)

        with pytest.raises(ExamBlockedError) as exc_info:
            await session.start()
        assert exc_info.value.score == 30

    @pytest.mark.asyncio
    async def test_zero_prior_score_offers_retake(self, fast_settings):
        backend = make_backend(prior_grade=ZERO)
        session = _session(backend, fast_settings)

        result = await session.load()

        assert result.ready
        assert result.decision.entry == "retake"
        assert session.phase == "results"
        assert session.available_actions() == ["retake"]
        snapshot = session.snapshot()
        assert snapshot.result["score"] == 0
        assert snapshot.result["minimum_passing_score"] == "Minimum passing score: 50%"

    @pytest.mark.asyncio
    async def test_question_fetch_failure_reports_error(self, fast_settings):
        backend = make_backend()
        backend.get_exam = AsyncMock(side_effect=RuntimeError("boom"))
        session = _session(backend, fast_settings)

        result = await session.load()

        assert result.status == "error"
        assert result.message == "Failed to load exam questions. Please try again later."
        assert session.phase == "welcome"
        assert session.available_actions() == []
        assert session.snapshot().notice == result.message

    @pytest.mark.asyncio
    async def test_start_before_load_raises_not_ready(self, fast_settings):
        session = _session(make_backend(), fast_settings)

        with pytest.raises(NotReadyError):
            await session.start()
        assert session.phase == "welcome"

    @pytest.mark.asyncio
    async def test_empty_exam_is_not_startable(self, fast_settings):
        empty = ExamBundle(exam=Exam(id="exam-1", duration_seconds=60))
        session = _session(make_backend(bundle=empty), fast_settings)

        result = await session.load()

        assert result.status == "error"
        with pytest.raises(NotReadyError):
            await session.start()

    @pytest.mark.asyncio
    async def test_entry_check_failure_reports_error(self, fast_settings):
        backend = make_backend()
        backend.compute_grade = AsyncMock(side_effect=RuntimeError("grades down"))
        session = _session(backend, fast_settings)

        result = await session.load()

        assert result.status == "error"
        backend.get_exam.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_session_helper(self, fast_settings):
        session, result = await load_session("exam-1", "learner-1", make_backend(), settings=fast_settings)

        assert result.ready
        assert session.exam_id == "exam-1"

    @pytest.mark.asyncio
    async def test_reload_during_exam_is_refused(self, fast_settings):
        session = await _started(make_backend(), fast_settings)

        with pytest.raises(StateTransitionError):
            await session.load()
        await session.abandon()


# ===========================================================================
# Exam phase
# ===========================================================================

class TestExamPhase:

    @pytest.mark.asyncio
    async def test_start_begins_countdown(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)

        assert session.phase == "exam"
        assert session.timer.running
        snapshot = session.snapshot()
        assert snapshot.progress_label == "Question 1 of 3"
        assert snapshot.actions == ["answer", "capture_media", "next", "previous", "submit"]
        await session.abandon()

    @pytest.mark.asyncio
    async def test_navigation_clamps_at_both_ends(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)

        assert session.previous() == 0
        assert session.next() == 1
        assert session.next() == 2
        assert session.next() == 2
        assert session.current_question.id == "q3"
        assert session.previous() == 1
        await session.abandon()

    @pytest.mark.asyncio
    async def test_answers_are_recorded_and_cleared(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)

        session.answer("q1", "12")
        session.answer("q2", "hello")
        assert session.snapshot().answered_count == 2

        session.answer("q2", "")
        assert session.answers.get("q2") is None
        assert session.snapshot().answered_count == 1
        await session.abandon()

    @pytest.mark.asyncio
    async def test_invalid_option_rejected(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)

        with pytest.raises(AnswerValidationError):
            session.answer("q1", "99")
        await session.abandon()

    @pytest.mark.asyncio
    async def test_answer_outside_exam_refused(self, fast_settings):
        session = _session(make_backend(), fast_settings)
        await session.load()

        with pytest.raises(StateTransitionError):
            session.answer("q1", "11")
        with pytest.raises(StateTransitionError):
            session.next()

    @pytest.mark.asyncio
    async def test_recapture_replaces_previous_image(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)
        first = MediaHandle(uri="first.jpg", content=b"1")

        assert session.capture_media("q3", first) is None
        assert session.capture_media("q3", MediaHandle(uri="second.png", content=b"2")) == first
        assert session.answers.get("q3").media.uri == "second.png"
        await session.abandon()

    @pytest.mark.asyncio
    async def test_abandon_stops_timer_and_clears_answers(self, fast_settings):
        session = await _started(make_backend(bundle=make_bundle(duration_seconds=600)), fast_settings)
        session.answer("q1", "11")

        await session.abandon()

        assert not session.timer.running
        assert session.answers.answered_count == 0
        assert session.available_actions() == []


# ===========================================================================
# Submit pipeline
# ===========================================================================

class TestSubmit:

    @pytest.mark.asyncio
    async def test_manual_submit_pass_issues_certificate(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        session = await _started(backend, fast_settings)
        _answer_everything(session)

        result = await session.submit()

        assert session.phase == "results"
        assert result.passed
        assert result.certificate.issued
        assert result.certificate.url == "https://certs.example/c1.pdf"
        assert not session.timer.running
        backend.upload_answer_media.assert_awaited_once()
        backend.issue_certificate.assert_awaited_once_with("learner-1", "u1")

        exam_id, entries = backend.record_submission.await_args.args
        assert exam_id == "exam-1"
        assert [e.to_payload() for e in entries] == [
            {"exam_question_id": "q1", "answer": "11", "photo": None},
            {"exam_question_id": "q2", "answer": "Flat hand tapping the chin", "photo": None},
            {"exam_question_id": "q3", "answer": "", "photo": "uploads/q3.jpg"},
        ]

    @pytest.mark.asyncio
    async def test_unanswered_questions_still_submitted(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=FAILING)
        session = await _started(backend, fast_settings)

        result = await session.submit()

        _, entries = backend.record_submission.await_args.args
        assert len(entries) == 3
        assert all(e.answer == "" and e.media is None for e in entries)
        assert result.entry_count == 3
        backend.upload_answer_media.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_grade_skips_certificate_and_blocks_retake(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=FAILING)
        session = await _started(backend, fast_settings)

        result = await session.submit()

        assert not result.passed
        assert not result.certificate.attempted
        backend.issue_certificate.assert_not_awaited()
        assert session.available_actions() == []
        assert session.snapshot().result["minimum_passing_score"] == "Minimum passing score: 50%"

    @pytest.mark.asyncio
    async def test_certificate_not_requested(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        session = await _started(backend, fast_settings, issue_certificate=False)

        result = await session.submit()

        assert result.passed
        assert not result.certificate.attempted
        backend.issue_certificate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_certificate_failure_keeps_result(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.issue_certificate = AsyncMock(side_effect=RuntimeError("issuer down"))
        session = await _started(backend, fast_settings)

        result = await session.submit()

        assert session.phase == "results"
        assert result.passed
        assert result.certificate.error == "Your result is saved, but your certificate wasn't generated."
        assert session.snapshot().notice == result.certificate.error
        assert session.certificate is None

    @pytest.mark.asyncio
    async def test_upload_failure_is_contained(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.upload_answer_media = AsyncMock(side_effect=RuntimeError("storage full"))
        session = await _started(backend, fast_settings)
        events = []
        session.subscribe(lambda event: events.append(event.type))
        _answer_everything(session)

        result = await session.submit()

        assert session.phase == "results"
        assert [w.question_id for w in result.upload_warnings] == ["q3"]
        _, entries = backend.record_submission.await_args.args
        assert entries[2].media is None
        assert "upload_warning" in events

    @pytest.mark.asyncio
    async def test_record_failure_keeps_answers_and_allows_retry(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=[RuntimeError("network"), None])
        session = await _started(backend, fast_settings)
        _answer_everything(session)

        with pytest.raises(SubmissionError) as exc_info:
            await session.submit()

        assert not exc_info.value.terminal
        assert session.phase == "exam"
        assert session.answers.answered_count == 3
        assert not session.answers.frozen
        assert session.timer.running
        assert session.snapshot().notice == (
            "Your answers are safe. Failed to submit exam, please try submitting again."
        )

        result = await session.submit()

        assert result.passed
        assert session.submit_runs == 2
        backend.upload_answer_media.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_grade_is_a_submission_failure(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=None)
        session = await _started(backend, fast_settings)

        with pytest.raises(GradingUnavailableError):
            await session.submit()
        assert session.phase == "exam"
        await session.abandon()

    @pytest.mark.asyncio
    async def test_submit_outside_exam_raises(self, fast_settings):
        session = _session(make_backend(), fast_settings)
        await session.load()

        with pytest.raises(StateTransitionError):
            await session.submit()
        assert await session.submit(auto=True) is None

    @pytest.mark.asyncio
    async def test_completion_is_cached(self, fast_settings):
        cache = CompletionCache(InMemoryKeyValueStore())
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        session = await _started(backend, fast_settings, completion_cache=cache)

        await session.submit()

        assert cache.local_ids("learner-1") == {"exam-1"}

    @pytest.mark.asyncio
    async def test_abandon_during_submit_keeps_session_out_of_results(self, fast_settings):
        gate = asyncio.Event()

        async def slow_record(exam_id, entries):
            await gate.wait()

        cache = CompletionCache(InMemoryKeyValueStore())
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=slow_record)
        session = await _started(backend, fast_settings, completion_cache=cache)
        events = []
        session.subscribe(lambda event: events.append(event.type))

        task = asyncio.create_task(session.submit())
        await asyncio.sleep(0.01)
        await session.abandon()
        gate.set()
        result = await task

        assert result.passed
        assert session.phase == "exam"
        assert session.finished
        assert session.available_actions() == []
        assert cache.local_ids("learner-1") == set()
        assert "submitted" not in events
        assert "phase_changed" not in events


# ===========================================================================
# Timer driven submit and coalescing
# ===========================================================================

class TestTimerExpiry:

    @pytest.mark.asyncio
    async def test_expiry_auto_submits_current_answers(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=2), grade=FAILING)
        session = await _started(backend, fast_settings)
        session.answer("q2", "partial")

        for _ in range(100):
            if session.phase == "results":
                break
            await asyncio.sleep(0.01)

        assert session.phase == "results"
        assert session.result.auto_submitted
        assert session.submit_runs == 1
        _, entries = backend.record_submission.await_args.args
        assert entries[1].answer == "partial"

    @pytest.mark.asyncio
    async def test_timer_during_manual_submit_runs_pipeline_once(self, fast_settings):
        gate = asyncio.Event()

        async def slow_record(exam_id, entries):
            await gate.wait()

        backend = make_backend(bundle=make_bundle(duration_seconds=2), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=slow_record)
        session = await _started(backend, fast_settings)
        events = []
        session.subscribe(lambda event: events.append(event.type))

        manual = asyncio.create_task(session.submit())
        for _ in range(100):
            if session.timer.expired:
                break
            await asyncio.sleep(0.01)
        assert session.timer.expired
        assert session.submitting

        gate.set()
        result = await manual
        await asyncio.sleep(0.02)

        assert result.passed
        assert session.submit_runs == 1
        assert backend.record_submission.await_count == 1
        assert "submit_coalesced" in events
        assert session.phase == "results"

    @pytest.mark.asyncio
    async def test_second_manual_submit_joins_first(self, fast_settings):
        gate = asyncio.Event()

        async def slow_record(exam_id, entries):
            await gate.wait()

        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=slow_record)
        session = await _started(backend, fast_settings)

        first = asyncio.create_task(session.submit())
        await asyncio.sleep(0)
        second = asyncio.create_task(session.submit())
        await asyncio.sleep(0)
        assert session.available_actions() == []
        gate.set()

        assert await first == await second
        assert session.submit_runs == 1

    @pytest.mark.asyncio
    async def test_answers_frozen_while_submitting(self, fast_settings):
        gate = asyncio.Event()

        async def slow_record(exam_id, entries):
            await gate.wait()

        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=slow_record)
        session = await _started(backend, fast_settings)

        task = asyncio.create_task(session.submit())
        await asyncio.sleep(0.01)
        assert session.answers.frozen
        with pytest.raises(StateTransitionError):
            session.answer("q1", "11")
        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_failed_auto_submit_closes_attempt(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=1), grade=PASSING)
        backend.record_submission = AsyncMock(side_effect=RuntimeError("offline"))
        session = await _started(backend, fast_settings)

        for _ in range(100):
            if session.attempt_closed:
                break
            await asyncio.sleep(0.01)

        assert session.attempt_closed
        assert session.phase == "exam"
        assert session.finished
        assert session.available_actions() == []
        assert session.last_error.terminal
        with pytest.raises(StateTransitionError):
            session.answer("q1", "11")


# ===========================================================================
# Retake
# ===========================================================================

class TestRetake:

    @pytest.mark.asyncio
    async def test_retake_after_zero_entry(self, fast_settings):
        backend = make_backend(prior_grade=ZERO)
        session = _session(backend, fast_settings)
        await session.load()

        await session.retake()

        assert session.phase == "welcome"
        assert session.decision.entry == "fresh"
        assert session.result is None
        backend.delete_submission.assert_awaited_once_with("exam-1")
        backend.delete_certificate.assert_not_awaited()

        await session.start()
        assert session.phase == "exam"
        await session.abandon()

    @pytest.mark.asyncio
    async def test_retake_deletes_certificate_before_submission(self, fast_settings):
        calls = []
        backend = make_backend(prior_grade=ZERO)
        backend.list_certificates = AsyncMock(return_value=[
            Certificate(learner_id="learner-1", curriculum_unit_id="u1", url="https://certs.example/old.pdf")
        ])
        backend.delete_certificate = AsyncMock(side_effect=lambda *args: calls.append("certificate"))
        backend.delete_submission = AsyncMock(side_effect=lambda *args: calls.append("submission"))
        session = _session(backend, fast_settings)
        await session.load()

        await session.retake()

        assert calls == ["certificate", "submission"]
        assert session.certificate is None

    @pytest.mark.asyncio
    async def test_retake_failure_stays_on_results(self, fast_settings):
        backend = make_backend(prior_grade=ZERO)
        backend.list_certificates = AsyncMock(return_value=[
            Certificate(learner_id="learner-1", curriculum_unit_id="u1", url="https://certs.example/old.pdf")
        ])
        backend.delete_submission = AsyncMock(side_effect=RuntimeError("denied"))
        session = _session(backend, fast_settings)
        await session.load()
        assert session.certificate is not None

        with pytest.raises(RetakeInvalidationError) as exc_info:
            await session.retake()

        assert exc_info.value.step == "delete_submission"
        assert exc_info.value.certificate_deleted
        assert session.phase == "results"
        assert session.latest_grade == ZERO
        assert session.certificate is None
        assert session.snapshot().notice == "Failed to delete previous submission. Please try again."

    @pytest.mark.asyncio
    async def test_zero_score_submission_offers_retake(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=ZERO)
        session = await _started(backend, fast_settings)

        await session.submit()

        assert session.available_actions() == ["retake"]
        await session.retake()
        assert session.phase == "welcome"
        assert session.answers.answered_count == 0

    @pytest.mark.asyncio
    async def test_retake_refused_for_nonzero_score(self, fast_settings):
        backend = make_backend(prior_grade=FAILING)
        session = _session(backend, fast_settings)
        await session.load()

        with pytest.raises(StateTransitionError):
            await session.retake()
        backend.delete_submission.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retake_forgets_cached_completion(self, fast_settings):
        cache = CompletionCache(InMemoryKeyValueStore())
        backend = make_backend(prior_grade=ZERO)
        session = _session(backend, fast_settings, completion_cache=cache)
        await session.load()
        assert cache.local_ids("learner-1") == {"exam-1"}

        await session.retake()

        assert cache.local_ids("learner-1") == set()


# ===========================================================================
# Events
# ===========================================================================

class TestEvents:

    @pytest.mark.asyncio
    async def test_listener_receives_lifecycle_events(self, fast_settings):
        backend = make_backend(bundle=make_bundle(duration_seconds=600), grade=PASSING)
        session = _session(backend, fast_settings)
        events = []
        unsubscribe = session.subscribe(lambda event: events.append(event.type))

        await session.load()
        await session.start()
        await session.submit()
        unsubscribe()
        await session.abandon()

        assert events[0] == "loaded"
        assert "submit_started" in events
        assert "submitted" in events
        assert "certificate_issued" in events
        assert "abandoned" not in events

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_session(self, fast_settings):
        session = _session(make_backend(), fast_settings)

        def broken(event):
            raise RuntimeError("listener bug")

        session.subscribe(broken)
        result = await session.load()

        assert result.ready
