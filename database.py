"""
Database management layer for the local key-value cache.

Provides abstraction for database connections, sessions, and schema creation.
"""

from sqlalchemy import create_engine, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from config import get_settings
import logging

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and sessions for the completion cache.

    Provides:
    - Engine creation
    - Session factory
    - Schema creation
    """

    def __init__(self, database_url: str | None = None):
        self.settings = get_settings()
        self.database_url = database_url or self.settings.database_url
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False
            )
        return self._session_factory

    def _create_engine(self) -> Engine:
        logger.info(f"Creating database engine for: {self._mask_password(self.database_url)}")

        connect_args = {}
        if self.database_url.startswith("sqlite"):
            # The cache is touched from the event loop thread and from FastAPI workers
            connect_args["check_same_thread"] = False

        engine = create_engine(
            self.database_url,
            connect_args=connect_args,
            pool_pre_ping=True,
            echo=self.settings.log_level == "DEBUG",
        )

        logger.info("Database engine created successfully")
        return engine

    def init_db(self) -> None:
        """Create the cache tables if they do not exist."""
        from assessment.models.entities import Base

        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        return self.session_factory()

    def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns:
            bool: True if database is accessible, False otherwise
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self):
        """Close the database engine and dispose of connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine closed")

    @staticmethod
    def _mask_password(url: str) -> str:
        if "@" in url and ":" in url:
            parts = url.split("@")
            if len(parts) == 2:
                credentials = parts[0]
                if ":" in credentials:
                    user_pass = credentials.split(":")
                    if len(user_pass) >= 2:
                        return f"{':'.join(user_pass[:-1])}:****@{parts[1]}"
        return url


# Global database manager instance
_db_manager: DatabaseManager | None = None


def get_db_manager() -> DatabaseManager:
    """
    Get or create the global database manager instance.

    Returns:
        DatabaseManager: Database manager
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager

