"""Exam engine constants - all magic numbers centralized."""

# Grading
PASS_THRESHOLD = 50.0  # score >= 50: passed, certificate eligible
RETAKE_SCORE = 0.0  # only a zero score re-opens an exam for retake

# Proficiency bands (lower bound, label), highest first
LEVEL_BANDS = (
    (85.0, "Advanced"),
    (70.0, "Intermediate"),
    (50.0, "Beginner"),
    (0.0, "Foundation"),
)

LEVEL_DESCRIPTIONS = {
    "Advanced": (
        "Outstanding performance! (85%+) You have mastered the fundamentals "
        "and are ready for advanced concepts and complex conversations."
    ),
    "Intermediate": (
        "Great work! (70-84%) You have a solid understanding of the basics "
        "and are ready to expand your vocabulary and grammar skills."
    ),
    "Beginner": (
        "Good start! (50-69%) You have some knowledge and will benefit from "
        "our structured beginner program to build stronger foundations."
    ),
    "Foundation": (
        "Welcome! (Below 50%) You're just starting your journey. Our foundation "
        "program will introduce you to the basics step by step."
    ),
}

# Session defaults
DEFAULT_EXAM_DURATION_MINUTES = 30
SECONDS_PER_MINUTE = 60

# Local cache keys
COMPLETED_EXAMS_KEY = "completed-exams-{learner_id}"
