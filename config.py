"""
Configuration management for the exam session engine.

Centralizes all configuration using Pydantic settings with environment variable support.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Exam backend (REST collaborator)
    exam_api_base_url: str = Field(
        default="http://127.0.0.1:8000/",
        description="Base URL of the exam/grading/certificate REST backend"
    )
    exam_api_token: str = Field(
        default="",
        description="Bearer token forwarded to the backend (optional)"
    )
    exam_api_timeout_seconds: Optional[float] = Field(
        default=None,
        description="HTTP timeout for backend calls; None waits indefinitely"
    )

    # Exam session behaviour
    default_exam_duration_seconds: int = Field(
        default=1800,
        description="Duration used when an exam does not declare one"
    )
    timer_tick_seconds: float = Field(
        default=1.0,
        description="Countdown granularity in seconds"
    )
    issue_certificates: bool = Field(
        default=True,
        description="Request a certificate after a passing grade"
    )

    # Local key-value cache
    database_url: str = Field(
        default="sqlite:///./exam_cache.db",
        description="SQLAlchemy URL for the local completion cache"
    )

    # API Configuration
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )

    # Application Settings
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    Returns:
        Settings: Application settings
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings():
    """Reset the global settings instance (useful for testing)."""
    global _settings
    _settings = None


def validate_required_settings():
    """
    Validate that all required settings are present at runtime.

    Raises ValueError if required settings are missing or inconsistent.
    """
    settings = get_settings()

    if not settings.exam_api_base_url:
        raise ValueError(
            "EXAM_API_BASE_URL environment variable is required but not set."
        )

    if settings.timer_tick_seconds <= 0:
        raise ValueError("TIMER_TICK_SECONDS must be positive")

    if settings.default_exam_duration_seconds <= 0:
        raise ValueError("DEFAULT_EXAM_DURATION_SECONDS must be positive")

    return True
