"""Exam backend collaborators."""
from assessment.clients.base import ExamBackend
from assessment.clients.http_backend import HttpExamBackend
