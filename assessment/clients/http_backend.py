"""
REST implementation of the exam backend over httpx.

Routes follow the platform API:
    GET    api/exams/{exam_id}
    POST   api/exams/{exam_id}/submit
    POST   api/exams/{exam_id}/questions/{question_id}/answer-image
    GET    api/exams/{exam_id}/students/{learner_id}/grades
    DELETE api/exams/{exam_id}/submission
    GET    api/certificates/generate/{learner_id}/{unit_id}
    GET    api/certificates
    DELETE api/certificates/{learner_id}/{unit_id}
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from config import Settings, get_settings
from assessment.clients.base import ExamBackend
from assessment.exceptions import BackendError
from assessment.models.answers import SubmissionEntry
from assessment.models.exam import Exam, ExamBundle, Option, Question, normalize_answer_kind
from assessment.models.grading import Certificate, GradeResult, level_for_score
from assessment.utils.formatting import duration_from_minutes

logger = logging.getLogger("assessment.http_backend")


def _str_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_exam_bundle(data: dict, default_duration_seconds: Optional[int] = None) -> ExamBundle:
    """Build an ExamBundle from the `GET api/exams/{id}` payload."""
    raw_exam = data.get("exam") or {}
    raw_questions = data.get("questions") or []

    questions = []
    for q in raw_questions:
        kind = normalize_answer_kind(q.get("answer_type"))
        options: tuple[Option, ...] = ()
        if kind == "multiple_choice":
            options = tuple(
                Option(
                    id=str(opt.get("id")),
                    text=opt.get("text") or opt.get("option_text") or "",
                    media=opt.get("image_url") or opt.get("image"),
                )
                for opt in (q.get("options") or [])
            )
        questions.append(Question(
            id=str(q.get("id")),
            prompt_text=q.get("question_text") or "",
            media=q.get("question_media_url") or q.get("question_media"),
            media_type=q.get("question_media_type"),
            answer_kind=kind,
            options=options,
            points=float(q.get("points") or 0),
        ))

    exam = Exam(
        id=str(raw_exam.get("id")),
        name=raw_exam.get("name") or raw_exam.get("title") or "",
        description=raw_exam.get("description") or "",
        duration_seconds=duration_from_minutes(raw_exam.get("duration"), default_duration_seconds),
        level=_str_id(raw_exam.get("level") or raw_exam.get("level_id")),
        question_ids=tuple(q.id for q in questions),
    )
    return ExamBundle(exam=exam, questions=tuple(questions))


def parse_grade(data: Any) -> Optional[GradeResult]:
    """Build a GradeResult from the grades payload; empty payloads mean no grade."""
    if not data or not isinstance(data, dict) or data.get("score") is None:
        return None
    score = max(0.0, min(100.0, float(data["score"])))
    return GradeResult(
        score=score,
        level=data.get("level") or level_for_score(score),
        curriculum_unit_id=_str_id(data.get("level_id") or data.get("curriculum_unit_id")),
    )


def parse_certificate(data: dict, learner_id: str) -> Optional[Certificate]:
    unit_id = _str_id(data.get("level_id") or data.get("curriculum_unit_id"))
    if unit_id is None:
        return None
    issued_at = data.get("issued_at") or data.get("created_at")
    try:
        issued = datetime.fromisoformat(issued_at) if issued_at else None
    except (TypeError, ValueError):
        issued = None
    return Certificate(
        id=_str_id(data.get("id")),
        learner_id=_str_id(data.get("user_id")) or learner_id,
        curriculum_unit_id=unit_id,
        url=data.get("certificate_url") or data.get("url"),
        issued_at=issued,
    )


class HttpExamBackend(ExamBackend):
    """ExamBackend over the platform REST API."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=self.settings.exam_api_base_url,
            headers=self._default_headers(),
            timeout=self.settings.exam_api_timeout_seconds,
        )

    def _default_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.settings.exam_api_token:
            headers["Authorization"] = f"Bearer {self.settings.exam_api_token}"
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            body = e.response.text[:200] if e.response is not None else ""
            logger.error(f"{operation} failed with status {e.response.status_code}: {body}")
            raise BackendError(operation, body or str(e), status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error(f"{operation} failed: {e}")
            raise BackendError(operation, str(e) or type(e).__name__) from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get_exam(self, exam_id: str) -> ExamBundle:
        response = await self._request("get_exam", "GET", f"api/exams/{exam_id}")
        data = self._json(response) or {}
        bundle = parse_exam_bundle(data, self.settings.default_exam_duration_seconds)
        logger.info(f"Loaded exam {exam_id} with {bundle.question_count} questions")
        return bundle

    async def record_submission(self, exam_id: str, entries: list[SubmissionEntry]) -> None:
        payload = {"submissions": [entry.to_payload() for entry in entries]}
        await self._request("record_submission", "POST", f"api/exams/{exam_id}/submit", json=payload)

    async def upload_answer_media(
        self,
        exam_id: str,
        question_id: str,
        content: bytes,
        filename: str = "answer.jpg",
        content_type: str = "image",
    ) -> str:
        response = await self._request(
            "upload_answer_media",
            "POST",
            f"api/exams/{exam_id}/questions/{question_id}/answer-image",
            files={"image": (filename, content, content_type)},
        )
        data = self._json(response) or {}
        path = data.get("path") or data.get("remote_path")
        if not path:
            raise BackendError("upload_answer_media", "response carried no path")
        return path

    async def compute_grade(self, exam_id: str, learner_id: str) -> Optional[GradeResult]:
        try:
            response = await self._request(
                "compute_grade", "GET", f"api/exams/{exam_id}/students/{learner_id}/grades"
            )
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise
        return parse_grade(self._json(response))

    async def delete_submission(self, exam_id: str) -> None:
        await self._request("delete_submission", "DELETE", f"api/exams/{exam_id}/submission")

    async def issue_certificate(self, learner_id: str, curriculum_unit_id: str) -> Optional[str]:
        response = await self._request(
            "issue_certificate", "GET", f"api/certificates/generate/{learner_id}/{curriculum_unit_id}"
        )
        data = self._json(response) or {}
        return data.get("certificate_url")

    async def list_certificates(self, learner_id: str) -> list[Certificate]:
        response = await self._request("list_certificates", "GET", "api/certificates")
        data = self._json(response) or []
        if isinstance(data, dict):
            data = data.get("certificates") or data.get("data") or []
        certificates = []
        for item in data:
            cert = parse_certificate(item, learner_id)
            if cert is not None and cert.learner_id == learner_id:
                certificates.append(cert)
        return certificates

    async def delete_certificate(self, learner_id: str, curriculum_unit_id: str) -> None:
        await self._request(
            "delete_certificate", "DELETE", f"api/certificates/{learner_id}/{curriculum_unit_id}"
        )
