"""
Completion Cache

Two-tier view of which exams a learner has completed. Server state is
authoritative; the local key-value cache is a write-through optimistic
overlay, reconciled on load and never used to override the server.
"""

import asyncio
import logging
from typing import Iterable

from assessment.repositories.kv_store import KeyValueStore
from assessment.services.grading_service import GradingService
from assessment.utils.constants import COMPLETED_EXAMS_KEY

logger = logging.getLogger("assessment.completion_cache")


class CompletionCache:
    """Local overlay of completed exam ids per learner."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def _key(learner_id: str) -> str:
        return COMPLETED_EXAMS_KEY.format(learner_id=learner_id)

    def local_ids(self, learner_id: str) -> set[str]:
        try:
            raw = self.store.get(self._key(learner_id))
        except Exception as e:
            logger.warning(f"Failed to read completion cache for learner {learner_id}: {e}")
            return set()
        if not isinstance(raw, list):
            return set()
        return {str(item) for item in raw}

    def _save(self, learner_id: str, ids: set[str]) -> None:
        try:
            self.store.set(self._key(learner_id), sorted(ids))
        except Exception as e:
            logger.warning(f"Failed to save completion cache for learner {learner_id}: {e}")

    def mark_completed(self, learner_id: str, exam_id: str) -> None:
        ids = self.local_ids(learner_id)
        if exam_id not in ids:
            ids.add(exam_id)
            self._save(learner_id, ids)

    def forget(self, learner_id: str, exam_id: str) -> None:
        ids = self.local_ids(learner_id)
        if exam_id in ids:
            ids.discard(exam_id)
            self._save(learner_id, ids)

    def reconcile(self, learner_id: str, server_completed: Iterable[str]) -> set[str]:
        """
        Union of server-reported and locally cached completions, for listings.

        The union is written back so the cache converges on what was shown.
        """
        merged = self.local_ids(learner_id) | {str(exam_id) for exam_id in server_completed}
        self._save(learner_id, merged)
        return merged

    def reconcile_exam(self, learner_id: str, exam_id: str, server_completed: bool) -> bool:
        """
        Align the cache entry for one exam with the server and return the server value.

        A cached completion the server no longer knows about is dropped.
        """
        cached = exam_id in self.local_ids(learner_id)
        if server_completed and not cached:
            self.mark_completed(learner_id, exam_id)
        elif cached and not server_completed:
            logger.warning(f"Dropping stale cached completion of exam {exam_id} for learner {learner_id}")
            self.forget(learner_id, exam_id)
        return server_completed

    async def completed_exams(
        self, learner_id: str, exam_ids: Iterable[str], grading: GradingService
    ) -> list[str]:
        """
        Completed exams among `exam_ids` for a learner-facing listing.

        An exam counts as completed when the server holds a grade for it or
        the cache remembers it. Exams whose grade lookup fails fall back to
        the cache alone.
        """
        requested = list(dict.fromkeys(str(exam_id) for exam_id in exam_ids))
        grades = await asyncio.gather(
            *(grading.fetch_grade(exam_id, learner_id) for exam_id in requested),
            return_exceptions=True,
        )

        server_completed = []
        for exam_id, grade in zip(requested, grades):
            if isinstance(grade, Exception):
                logger.warning(f"Grade lookup for exam {exam_id} failed, using cached state: {grade}")
            elif grade is not None:
                server_completed.append(exam_id)

        merged = self.reconcile(learner_id, server_completed)
        return [exam_id for exam_id in requested if exam_id in merged]
