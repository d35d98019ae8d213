"""
Write queue: FIFO of pending persistence operations.

Every write a server makes (table creation, object insert/update, object
delete) is enqueued here and dispatched to the storage adapter one entry
per tick. Dispatch is fire-and-forget: the entry leaves the queue as soon
as its query is executed, and completion callbacks flip record state
later on the event loop.

Invariants:
    - Entries are dispatched in strict submission order
    - At most one entry is dispatched per drain_one() call
    - A tick while the store is disconnected consumes nothing
    - Failed operations are logged and never retried
    - Insert vs update is decided at dispatch time, not at enqueue time

How to change safely:
    - Keep one-entry-per-tick; callers rely on it to bound write load
    - New entry kinds need a builder in build_query and a test
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from .schema.types import IDENTITY_FIELD

if TYPE_CHECKING:
    from .context import Context
    from .orm.model import Model
    from .orm.record import Record
    from .store.base import Query, QueryResult, StorageAdapter

logger = logging.getLogger(__name__)


class WriteKind(Enum):
    """Persistence operations the queue knows how to dispatch."""

    SCHEMA_CREATE = "schema_create"
    OBJECT_UPSERT = "object_upsert"
    OBJECT_DELETE = "object_delete"


@dataclass
class WriteEntry:
    """One pending persistence operation."""

    kind: WriteKind
    model: Model
    record: Record | None = None


class WriteQueue:
    """Serializes all writes against the storage adapter.

    Example:
        >>> queue = WriteQueue(context)
        >>> queue.enqueue(WriteKind.OBJECT_UPSERT, user_model, user)
        >>> queue.drain_one()  # called once per tick
        True
    """

    def __init__(self, context: Context) -> None:
        self.context = context
        self._entries: deque[WriteEntry] = deque()
        self._dispatched_count = 0
        self._dropped_count = 0
        self._failed_count = 0

    def enqueue(self, kind: WriteKind, model: Model, record: Record | None = None) -> None:
        """Append an operation to the tail of the queue."""
        self._entries.append(WriteEntry(kind, model, record))

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self) -> WriteEntry | None:
        return self._entries[0] if self._entries else None

    def queued(self, record: Record) -> bool:
        """Whether a write for record is still waiting in the queue."""
        return any(entry.record is record for entry in self._entries)

    def drain_one(self) -> bool:
        """Dispatch the head entry.

        Returns:
            True if an entry was consumed, False if the queue is empty or
            the store is not connected
        """
        store = self.context.store
        if store is None or not store.is_connected:
            return False
        if not self._entries:
            return False

        entry = self._entries.popleft()
        try:
            query = self.build_query(store, entry)
        except Exception as e:
            self._failed_count += 1
            logger.error(
                f"Failed to build {entry.kind.value} for {entry.model.name}: {e}",
                extra={"model": entry.model.name, "kind": entry.kind.value},
            )
            return True

        if query is None:
            self._dropped_count += 1
            return True

        query.on_error(lambda error: self._on_failed(entry, error))
        query.execute()
        self._dispatched_count += 1
        logger.debug(
            "Dispatched write",
            extra={"model": entry.model.name, "kind": entry.kind.value, "depth": len(self)},
        )
        return True

    def build_query(self, store: StorageAdapter, entry: WriteEntry) -> Query | None:
        """Compile an entry into a store query (None drops the entry)."""
        if entry.kind == WriteKind.SCHEMA_CREATE:
            return self._build_create(store, entry.model)
        if entry.kind == WriteKind.OBJECT_UPSERT:
            return self._build_upsert(store, entry.model, entry.record)
        return self._build_delete(store, entry.model, entry.record)

    def _build_create(self, store: StorageAdapter, model: Model) -> Query:
        query = store.create(model.table_name)
        for name, kind in model.schema.columns():
            if name == IDENTITY_FIELD and model.schema.has_identity:
                query.column(name, kind.sql_type, auto_increment=True).primary_key(name)
            else:
                query.column(name, kind.sql_type)

        def created(result: QueryResult) -> None:
            logger.info(f"Table ready: {model.table_name}", extra={"model": model.name})
            if model.schema.store_synchronized:
                model.perform_sync()

        return query.on_complete(created)

    def _build_upsert(self, store: StorageAdapter, model: Model, record: Record) -> Query | None:
        schema = model.schema
        values = record.to_dict()

        if not record.persisted:
            query = store.insert(model.table_name)
            for column, value in values.items():
                if column == IDENTITY_FIELD and not schema.store_synchronized:
                    continue
                query.set_column(column, value)

            def inserted(result: QueryResult) -> None:
                record.mark_persisted()
                if (
                    schema.has_identity
                    and not schema.store_synchronized
                    and result.last_insert_id is not None
                ):
                    record.id = int(result.last_insert_id)

            return query.on_complete(inserted)

        if not schema.has_identity:
            logger.warning(
                f"Cannot update {model.name} without an identity column, dropping write",
                extra={"model": model.name},
            )
            return None

        query = store.update(model.table_name).where(IDENTITY_FIELD, values[IDENTITY_FIELD])
        for column, value in values.items():
            if column != IDENTITY_FIELD:
                query.set_column(column, value)
        return query

    def _build_delete(self, store: StorageAdapter, model: Model, record: Record) -> Query | None:
        query = store.delete(model.table_name)
        if model.schema.has_identity:
            return query.where(IDENTITY_FIELD, record.get(IDENTITY_FIELD))

        conditions = {k: v for k, v in record.to_dict().items() if v is not None}
        if not conditions:
            logger.warning(
                f"Refusing to delete {model.name} row with no values",
                extra={"model": model.name},
            )
            return None
        for column, value in conditions.items():
            query.where(column, value)
        return query

    def _on_failed(self, entry: WriteEntry, error: Exception) -> None:
        self._failed_count += 1
        logger.error(
            f"Write failed for {entry.model.name}: {error}",
            extra={"model": entry.model.name, "kind": entry.kind.value},
        )

    def clear(self) -> None:
        self._entries.clear()

    @property
    def stats(self) -> dict[str, Any]:
        """Get write queue statistics."""
        return {
            "depth": len(self._entries),
            "dispatched_count": self._dispatched_count,
            "dropped_count": self._dropped_count,
            "failed_count": self._failed_count,
        }
