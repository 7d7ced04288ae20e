"""Utility functions and helpers."""
from .formatting import (
    format_time,
    duration_from_minutes,
    progress_label,
    progress_percentage,
)
from .constants import (
    PASS_THRESHOLD,
    RETAKE_SCORE,
    LEVEL_BANDS,
    LEVEL_DESCRIPTIONS,
)

__all__ = [
    # Formatting
    "format_time",
    "duration_from_minutes",
    "progress_label",
    "progress_percentage",
    # Constants
    "PASS_THRESHOLD",
    "RETAKE_SCORE",
    "LEVEL_BANDS",
    "LEVEL_DESCRIPTIONS",
]
