"""Exam session engine: timed attempts, submission, grading, certificates and retakes."""
