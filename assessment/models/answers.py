"""
Answer Models

Transient answers captured during an attempt and the normalized
per-question entries sent for grading.
"""

import re
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse
from pydantic import BaseModel, ConfigDict, Field

from assessment.models.exam import AnswerKind


_EXTENSION_RE = re.compile(r"\.(\w+)$")


class MediaHandle(BaseModel):
    """A locally captured or selected image, not yet uploaded."""

    model_config = ConfigDict(frozen=True)

    uri: str = Field(description="Local file path or file:// URI of the capture")
    content: Optional[bytes] = Field(default=None, description="Captured bytes, when held in memory")

    @property
    def filename(self) -> str:
        return self.uri.rstrip("/").split("/")[-1]

    @property
    def content_type(self) -> str:
        match = _EXTENSION_RE.search(self.filename)
        return f"image/{match.group(1).lower()}" if match else "image"

    def read_bytes(self) -> bytes:
        """Return the image bytes, reading the local file when not held in memory."""
        if self.content is not None:
            return self.content
        parsed = urlparse(self.uri)
        path = unquote(parsed.path) if parsed.scheme == "file" else self.uri
        return Path(path).read_bytes()


class Answer(BaseModel):
    """A captured answer for one question. Shape depends on the answer kind."""

    question_id: str
    kind: AnswerKind
    option_id: Optional[str] = None
    text: Optional[str] = None
    media: Optional[MediaHandle] = None
    remote_path: Optional[str] = None


class SubmissionEntry(BaseModel):
    """The normalized per-question record sent for grading."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    answer: str = ""
    media: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "exam_question_id": self.question_id,
            "answer": self.answer,
            "photo": self.media,
        }
