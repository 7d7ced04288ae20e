"""Pytest configuration and shared fixtures."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
from assessment.models.entities import Base
from helpers import make_bundle


@pytest.fixture(scope="function")
def db_session():
    """
    Create a test database session with in-memory SQLite.

    This fixture creates a fresh database for each test function,
    ensuring test isolation.
    """
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(engine)


@pytest.fixture
def sample_bundle():
    return make_bundle()


@pytest.fixture
def fast_settings():
    """Settings with a fast countdown for timer-driven tests."""
    return Settings(timer_tick_seconds=0.01, issue_certificates=True)
