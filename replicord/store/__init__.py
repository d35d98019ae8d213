"""
Storage adapters for replicord.

Exports:
    - StorageAdapter: Protocol every backend implements
    - Query, QueryKind, QueryResult: Statement builder and results
    - SqliteStore: SQLite backend
    - InMemoryStore: In-memory backend for tests
    - create_store: Factory from StoreConfig
"""

from .base import (
    ColumnDef,
    Condition,
    Query,
    QueryKind,
    QueryResult,
    StorageAdapter,
    canonical_operator,
    create_store,
)
from .memory import InMemoryStore
from .sqlite import SqliteStore

__all__ = [
    "ColumnDef",
    "Condition",
    "InMemoryStore",
    "Query",
    "QueryKind",
    "QueryResult",
    "SqliteStore",
    "StorageAdapter",
    "canonical_operator",
    "create_store",
]
