"""Key-value store data access layer."""
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.orm import Session as DBSession

from assessment.models.entities import KeyValueEntry

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal persistent key-value collaborator. Values are JSON-serializable."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> bool:
        ...


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, used when no database is configured."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class SqlKeyValueStore(KeyValueStore):
    """Repository for key-value entries backed by SQLAlchemy."""

    def __init__(self, db: DBSession):
        self.db = db

    def _commit(self) -> None:
        """Commit, rolling the session back on failure."""
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Cache transaction failed: {e}")
            raise

    def get(self, key: str) -> Optional[Any]:
        """
        Retrieve a value by key.

        Args:
            key: Entry key

        Returns:
            Decoded value if found and readable, None otherwise
        """
        row = self.db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
        if row is None:
            return None
        try:
            return json.loads(row.value_json)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Unreadable cache entry for key {key}, ignoring")
            return None

    def set(self, key: str, value: Any) -> None:
        row = self.db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
        if row is None:
            row = KeyValueEntry(key=key, value_json=json.dumps(value), updated_at=datetime.utcnow())
            self.db.add(row)
        else:
            row.value_json = json.dumps(value)
            row.updated_at = datetime.utcnow()
        self._commit()

    def delete(self, key: str) -> bool:
        row = self.db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
        if row:
            self.db.delete(row)
            self._commit()
            return True
        return False
