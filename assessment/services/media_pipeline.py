"""
Media Capture Pipeline

Uploads every staged answer image concurrently at submit time. Each upload
settles independently; failures are contained here and become a null media
path for that question plus a learner-facing warning.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from assessment.clients.base import ExamBackend
from assessment.exceptions import UploadError
from assessment.models.answers import MediaHandle
from assessment.models.grading import UploadWarning
from assessment.services.answer_store import AnswerStore

logger = logging.getLogger("assessment.media_pipeline")


@dataclass
class MediaResolution:
    """Per-question remote paths after all uploads settled."""

    paths: dict[str, Optional[str]] = field(default_factory=dict)
    failures: list[UploadError] = field(default_factory=list)

    @property
    def warnings(self) -> list[UploadWarning]:
        return [UploadWarning(question_id=f.question_id, message=f.user_message) for f in self.failures]


class MediaCapturePipeline:
    """Fan-out/fan-in uploader for image answers."""

    def __init__(
        self,
        backend: ExamBackend,
        on_warning: Optional[Callable[[UploadWarning], None]] = None,
    ):
        self.backend = backend
        self._on_warning = on_warning

    async def resolve(self, exam_id: str, store: AnswerStore) -> MediaResolution:
        """
        Upload all outstanding captures and collect their remote paths.

        Already uploaded captures (from an earlier failed submit) are reused.
        Never raises for an individual upload failure.
        """
        resolution = MediaResolution()
        for qid, answer in store.answers().items():
            if answer.kind == "image_upload" and answer.remote_path:
                resolution.paths[qid] = answer.remote_path

        pending = store.pending_media()
        if not pending:
            return resolution

        logger.info(f"Uploading {len(pending)} answer image(s) for exam {exam_id}")
        outcomes = await asyncio.gather(
            *(self._upload_one(exam_id, qid, handle) for qid, handle in pending.items())
        )

        for qid, path, error in outcomes:
            resolution.paths[qid] = path
            if path is not None:
                store.set_remote_path(qid, path)
            if error is not None:
                resolution.failures.append(error)
                if self._on_warning is not None:
                    self._on_warning(UploadWarning(question_id=qid, message=error.user_message))

        if resolution.failures:
            logger.warning(
                f"{len(resolution.failures)} of {len(pending)} answer image upload(s) failed for exam {exam_id}"
            )
        return resolution

    async def _upload_one(
        self, exam_id: str, question_id: str, handle: MediaHandle
    ) -> tuple[str, Optional[str], Optional[UploadError]]:
        try:
            content = await asyncio.to_thread(handle.read_bytes)
            path = await self.backend.upload_answer_media(
                exam_id,
                question_id,
                content,
                filename=handle.filename,
                content_type=handle.content_type,
            )
            return question_id, path, None
        except Exception as e:
            logger.warning(f"Error uploading image for question {question_id}: {e}")
            return question_id, None, UploadError(question_id, str(e) or type(e).__name__)
