"""Search index storage adapters."""

from knowledge_engine.storage.index_store import (
    IndexStoreError,
    IndexStoreUnavailableError,
    PostgresIndexStore,
)

__all__ = [
    "PostgresIndexStore",
    "IndexStoreError",
    "IndexStoreUnavailableError",
]
