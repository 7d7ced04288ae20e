"""Exam session services."""
from assessment.services.answer_store import AnswerStore
from assessment.services.countdown_timer import CountdownTimer
from assessment.services.media_pipeline import MediaCapturePipeline, MediaResolution
from assessment.services.submission_builder import build_submission, build_entry
from assessment.services.grading_service import GradingService
from assessment.services.certificate_service import CertificateService
from assessment.services.retake_policy import RetakePolicy
from assessment.services.completion_cache import CompletionCache
