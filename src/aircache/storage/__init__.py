"""
Record and key/value storage backends.
"""

from aircache.config.settings import StorageSettings
from aircache.exceptions import ConfigurationError
from aircache.storage.base import KeyValueStore, RecordStore
from aircache.storage.memory import MemoryStore


def create_store(settings: StorageSettings) -> RecordStore:
    """
    Build the configured backend. The returned object also implements
    KeyValueStore.

    Backends import lazily so a memory-only deployment never loads the
    DuckDB or Redis drivers.
    """
    backend = settings.backend
    if backend == "memory":
        return MemoryStore()
    if backend == "duckdb":
        from aircache.storage.duckdb import DuckDBStore

        return DuckDBStore(settings.path)
    if backend == "redis":
        from aircache.storage.redis import RedisStore

        return RedisStore(url=settings.url, prefix=settings.prefix)
    raise ConfigurationError(f"Unknown storage backend: {backend}")


__all__ = ["KeyValueStore", "MemoryStore", "RecordStore", "create_store"]
