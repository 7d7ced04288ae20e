"""Data access layer."""
from assessment.repositories.kv_store import KeyValueStore, InMemoryKeyValueStore, SqlKeyValueStore
