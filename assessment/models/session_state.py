"""
Session State Models

Phases, entry decisions, load results, lifecycle events and read-only
snapshots of an exam session.
"""

from datetime import datetime
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field

from assessment.models.grading import Certificate, GradeResult


SessionPhase = Literal["welcome", "exam", "results"]
EntryDecision = Literal["fresh", "retake", "blocked"]
LoadStatus = Literal["ready", "blocked", "error"]
SessionAction = Literal["start", "answer", "capture_media", "next", "previous", "submit", "retake"]

EventType = Literal[
    "loaded",
    "phase_changed",
    "tick",
    "timer_expired",
    "submit_started",
    "submit_failed",
    "submit_coalesced",
    "upload_warning",
    "submitted",
    "certificate_issued",
    "certificate_failed",
    "retake_completed",
    "retake_failed",
    "abandoned",
]


class RetakeDecision(BaseModel):
    """Outcome of the entry check for a (learner, exam) pair."""

    entry: EntryDecision
    prior_grade: Optional[GradeResult] = None
    certificate: Optional[Certificate] = None

    @property
    def retake_allowed(self) -> bool:
        return self.entry == "retake"


class LoadResult(BaseModel):
    """Discriminated result of loading a session."""

    status: LoadStatus
    decision: Optional[RetakeDecision] = None
    message: str = ""

    @property
    def ready(self) -> bool:
        return self.status == "ready"


class SessionEvent(BaseModel):
    """A lifecycle notification delivered to session subscribers."""

    type: EventType
    session_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
    at: datetime = Field(default_factory=datetime.utcnow)


class SessionSnapshot(BaseModel):
    """Read-only view of a session for presentation layers."""

    session_id: str
    exam_id: str
    learner_id: str
    phase: SessionPhase
    load_status: Optional[LoadStatus] = None
    actions: list[SessionAction] = Field(default_factory=list)
    exam_name: str = ""
    exam_description: str = ""
    question_count: int = 0
    total_points: float = 0.0
    current_index: int = 0
    current_question_id: Optional[str] = None
    progress_label: str = ""
    progress_percentage: float = 0.0
    answered_count: int = 0
    time_remaining_seconds: int = 0
    time_remaining_label: str = "00:00"
    submitting: bool = False
    attempt_closed: bool = False
    notice: Optional[str] = None
    result: Optional[dict[str, Any]] = None
