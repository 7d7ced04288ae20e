"""In-process registry of live exam sessions."""

import logging
from typing import Optional

from assessment.exceptions import SessionNotFoundError
from assessment.orchestration.exam_session import ExamSession

logger = logging.getLogger("assessment.registry")


class SessionRegistry:
    """Keeps live sessions addressable by id for the HTTP surface."""

    def __init__(self):
        self._sessions: dict[str, ExamSession] = {}

    def add(self, session: ExamSession) -> ExamSession:
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> ExamSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, exam_id: str, learner_id: str) -> Optional[ExamSession]:
        """Return the reusable session for a (learner, exam) pair, if one exists."""
        for session in self._sessions.values():
            if session.exam_id == exam_id and session.learner_id == learner_id and not session.finished:
                return session
        return None

    async def evict_finished(self, exam_id: str, learner_id: str) -> int:
        """
        Drop sessions of a (learner, exam) pair that can no longer serve an attempt.

        Covers completed, abandoned and terminally failed attempts.

        Returns:
            Number of sessions removed
        """
        stale = [
            session_id
            for session_id, session in self._sessions.items()
            if session.exam_id == exam_id and session.learner_id == learner_id and session.finished
        ]
        for session_id in stale:
            await self.remove(session_id)
        return len(stale)

    async def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.abandon()
            logger.info(f"Removed exam session {session_id}")

    def __len__(self) -> int:
        return len(self._sessions)


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
