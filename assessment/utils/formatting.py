"""Formatting utilities for timers and progress."""
from typing import Optional

from assessment.utils.constants import DEFAULT_EXAM_DURATION_MINUTES, SECONDS_PER_MINUTE


def format_time(seconds: int) -> str:
    """
    Format a remaining time as MM:SS.

    Args:
        seconds: Remaining seconds (negative values clamp to zero)

    Returns:
        Zero-padded "MM:SS" string; minutes are not wrapped at 60
    """
    seconds = max(0, int(seconds))
    mins, secs = divmod(seconds, SECONDS_PER_MINUTE)
    return f"{mins:02d}:{secs:02d}"


def duration_from_minutes(minutes: Optional[float], default_seconds: Optional[int] = None) -> int:
    """Convert a backend duration in minutes to seconds, falling back to the default."""
    try:
        value = float(minutes) if minutes is not None else 0.0
    except (TypeError, ValueError):
        value = 0.0
    if value > 0:
        return int(value * SECONDS_PER_MINUTE)
    if default_seconds:
        return int(default_seconds)
    return DEFAULT_EXAM_DURATION_MINUTES * SECONDS_PER_MINUTE


def progress_label(index: int, total: int) -> str:
    if total <= 0:
        return ""
    return f"Question {index + 1} of {total}"


def progress_percentage(index: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return min(100.0, (index + 1) / total * 100)

