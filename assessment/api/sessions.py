"""Exam session API endpoints: the learner action set over HTTP."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from config import get_settings
from database import get_db_manager
from assessment.clients.base import ExamBackend
from assessment.clients.http_backend import HttpExamBackend
from assessment.exceptions import ExamSessionError
from assessment.models.answers import MediaHandle
from assessment.models.schemas import (
    AnswerRequest,
    CompletedExamsResponse,
    CreateExamSessionRequest,
    CreateExamSessionResponse,
)
from assessment.models.session_state import SessionSnapshot
from assessment.orchestration.exam_session import ExamSession
from assessment.orchestration.registry import SessionRegistry, get_session_registry
from assessment.repositories.kv_store import SqlKeyValueStore
from assessment.services.completion_cache import CompletionCache
from assessment.services.grading_service import GradingService

logger = logging.getLogger("assessment.api")

router = APIRouter(prefix="/exam-sessions", tags=["exam-sessions"])

_backend: Optional[ExamBackend] = None
_cache: Optional[CompletionCache] = None


def get_exam_backend() -> ExamBackend:
    global _backend
    if _backend is None:
        _backend = HttpExamBackend()
    return _backend


def get_completion_cache() -> Optional[CompletionCache]:
    # Shared across requests; live sessions hold on to it
    global _cache
    if _cache is None:
        _cache = CompletionCache(SqlKeyValueStore(get_db_manager().get_session()))
    return _cache


async def close_collaborators() -> None:
    """Release the shared backend client and cache session."""
    global _backend, _cache
    if isinstance(_backend, HttpExamBackend):
        await _backend.aclose()
    if _cache is not None and isinstance(_cache.store, SqlKeyValueStore):
        _cache.store.db.close()
    _backend = None
    _cache = None


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, ExamSessionError):
        return e.to_http_exception()
    logger.exception(f"Error during {action}: {e}")
    return HTTPException(status_code=500, detail={"message": f"Error during {action}: {e}", "type": type(e).__name__})


@router.post("", response_model=CreateExamSessionResponse)
async def create_exam_session(
    request: CreateExamSessionRequest,
    backend: ExamBackend = Depends(get_exam_backend),
    cache: Optional[CompletionCache] = Depends(get_completion_cache),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Open (or reload) the session for a learner and exam and run the entry check."""
    try:
        session = registry.find(request.exam_id, request.learner_id)
        if session is None:
            await registry.evict_finished(request.exam_id, request.learner_id)
            session = registry.add(ExamSession(
                request.exam_id,
                request.learner_id,
                backend,
                settings=get_settings(),
                completion_cache=cache,
                issue_certificate=request.issue_certificate,
            ))
        load = await session.load()
        if not load.ready:
            logger.info(f"Session {session.session_id} opened with load status {load.status}")
        return CreateExamSessionResponse(load=load, session=session.snapshot())
    except Exception as e:
        raise _http_error(e, "creating exam session")


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_exam_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        return registry.get(session_id).snapshot()
    except Exception as e:
        raise _http_error(e, "reading exam session")


@router.post("/{session_id}/start", response_model=SessionSnapshot)
async def start_exam(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        session = registry.get(session_id)
        await session.start()
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "starting exam")


@router.post("/{session_id}/answers", response_model=SessionSnapshot)
async def answer_question(
    session_id: str, request: AnswerRequest, registry: SessionRegistry = Depends(get_session_registry)
):
    try:
        session = registry.get(session_id)
        session.answer(request.question_id, request.value)
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "recording answer")


@router.post("/{session_id}/media/{question_id}", response_model=SessionSnapshot)
async def capture_media(
    session_id: str,
    question_id: str,
    image: UploadFile = File(...),
    registry: SessionRegistry = Depends(get_session_registry),
):
    try:
        session = registry.get(session_id)
        content = await image.read()
        session.capture_media(question_id, MediaHandle(uri=image.filename or "answer.jpg", content=content))
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "capturing media")


@router.post("/{session_id}/next", response_model=SessionSnapshot)
async def next_question(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        session = registry.get(session_id)
        session.next()
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "navigating")


@router.post("/{session_id}/previous", response_model=SessionSnapshot)
async def previous_question(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        session = registry.get(session_id)
        session.previous()
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "navigating")


@router.post("/{session_id}/submit", response_model=SessionSnapshot)
async def submit_exam(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        session = registry.get(session_id)
        await session.submit()
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "submitting exam")


@router.post("/{session_id}/retake", response_model=SessionSnapshot)
async def retake_exam(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        session = registry.get(session_id)
        await session.retake()
        return session.snapshot()
    except Exception as e:
        raise _http_error(e, "retaking exam")


@router.delete("/{session_id}")
async def abandon_exam_session(session_id: str, registry: SessionRegistry = Depends(get_session_registry)):
    try:
        registry.get(session_id)
        await registry.remove(session_id)
        return {"session_id": session_id, "abandoned": True}
    except Exception as e:
        raise _http_error(e, "abandoning exam session")


@router.get("/learners/{learner_id}/completed", response_model=CompletedExamsResponse)
async def list_completed_exams(
    learner_id: str,
    exam_id: list[str] = Query(default=[]),
    backend: ExamBackend = Depends(get_exam_backend),
    cache: CompletionCache = Depends(get_completion_cache),
):
    """Which of the given exams the learner has completed, for level listings."""
    try:
        completed = await cache.completed_exams(learner_id, exam_id, GradingService(backend))
        return CompletedExamsResponse(learner_id=learner_id, completed_exam_ids=completed)
    except Exception as e:
        raise _http_error(e, "listing completed exams")
