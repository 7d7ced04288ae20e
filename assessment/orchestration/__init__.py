"""Exam session orchestration."""
from assessment.orchestration.exam_session import ExamSession, load_session
from assessment.orchestration.registry import SessionRegistry, get_session_registry
