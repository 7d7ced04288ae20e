"""
Grading Models

Grade results and certificates produced by external services, plus the
outcome of one submit run as seen by the session.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from assessment.utils.constants import LEVEL_BANDS, LEVEL_DESCRIPTIONS, PASS_THRESHOLD, RETAKE_SCORE


def level_for_score(score: float) -> str:
    """Proficiency band for a score, used when the grader sends no label."""
    for lower_bound, label in LEVEL_BANDS:
        if score >= lower_bound:
            return label
    return LEVEL_BANDS[-1][1]


def describe_level(level: Optional[str]) -> str:
    return LEVEL_DESCRIPTIONS.get(level or "", "")


class GradeResult(BaseModel):
    """Authoritative score and level computed server side."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0, le=100)
    level: str = ""
    curriculum_unit_id: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.score >= PASS_THRESHOLD

    @property
    def is_zero(self) -> bool:
        return self.score == RETAKE_SCORE

    @property
    def level_label(self) -> str:
        return self.level or level_for_score(self.score)

    @property
    def level_description(self) -> str:
        return describe_level(self.level_label)

    @property
    def formatted_score(self) -> str:
        return f"{self.score:.1f}%"


class Certificate(BaseModel):
    """An issued certificate for a (learner, curriculum unit) pair."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    learner_id: str
    curriculum_unit_id: str
    url: Optional[str] = None
    issued_at: Optional[datetime] = None


class CertificateOutcome(BaseModel):
    """Result of a certificate request after a passing grade."""

    attempted: bool = False
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def issued(self) -> bool:
        return self.attempted and self.url is not None and self.error is None


class UploadWarning(BaseModel):
    """A contained per-question upload failure, shown to the learner."""

    question_id: str
    message: str


class ExamResult(BaseModel):
    """Everything the results phase shows for one completed attempt."""

    grade: GradeResult
    certificate: CertificateOutcome = Field(default_factory=CertificateOutcome)
    upload_warnings: list[UploadWarning] = Field(default_factory=list)
    entry_count: int = 0
    auto_submitted: bool = False
    completed_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def passed(self) -> bool:
        return self.grade.passed

    def summary(self) -> dict:
        data = {
            "passed": self.passed,
            "score": self.grade.score,
            "formatted_score": self.grade.formatted_score,
            "level": self.grade.level_label,
            "level_description": self.grade.level_description,
            "certificate_url": self.certificate.url,
            "certificate_error": self.certificate.error,
            "upload_warnings": [w.model_dump() for w in self.upload_warnings],
            "auto_submitted": self.auto_submitted,
        }
        if not self.passed:
            data["minimum_passing_score"] = f"Minimum passing score: {PASS_THRESHOLD:.0f}%"
        return data
