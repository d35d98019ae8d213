"""
In-memory storage adapter for testing.

This module provides a storage backend that keeps tables as lists of dicts:
- Unit tests for the write queue and query translator
- Integration tests without a database file
- Local development

Invariants:
    - All data is lost on process exit
    - Statements are applied in the order run() is called
    - Comparison semantics match SQLite for ints, strings and NULL

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the StorageAdapter protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
import operator
from dataclasses import dataclass, field
from typing import Any

from ..errors import StorageError, StoreNotConnectedError
from .base import Condition, Query, QueryKind, QueryResult, StorageAdapter

logger = logging.getLogger(__name__)

_COMPARATORS = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass
class InMemoryTable:
    """In-memory table storage."""

    columns: list[str]
    auto_column: str | None = None
    primary_key: str | None = None
    rows: list[dict[str, Any]] = field(default_factory=list)
    next_id: int = 1


class InMemoryStore(StorageAdapter):
    """In-memory implementation of StorageAdapter for testing.

    Attributes:
        tables: Table name -> InMemoryTable
        executed: Every query passed to run(), in order

    Example:
        >>> store = InMemoryStore()
        >>> await store.connect()
        >>> store.set_connected(False)  # simulate an outage
    """

    def __init__(self) -> None:
        self.tables: dict[str, InMemoryTable] = {}
        self.executed: list[Query] = []
        self._connected = False
        self._failures: list[Exception] = []
        self._lock = asyncio.Lock()
        self.pending_tasks: set[asyncio.Task] = set()

    async def connect(self) -> None:
        self._connected = True
        logger.info("Connected in-memory store")

    async def close(self) -> None:
        await self.wait_pending()
        self._connected = False
        logger.info("Closed in-memory store")

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def run(self, query: Query) -> QueryResult:
        if not self._connected:
            raise StoreNotConnectedError()

        async with self._lock:
            self.executed.append(query)
            if self._failures:
                raise self._failures.pop(0)

            if query.kind == QueryKind.CREATE:
                return self._create(query)

            table = self.tables.get(query.table)
            if table is None:
                raise StorageError(f"no such table: {query.table}", query.table)

            if query.kind == QueryKind.SELECT:
                return self._select(table, query)
            if query.kind == QueryKind.INSERT:
                return self._insert(table, query)
            if query.kind == QueryKind.UPDATE:
                return self._update(table, query)
            if query.kind == QueryKind.DELETE:
                return self._delete(table, query)

        raise StorageError(f"Unsupported query kind: {query.kind}", query.table)

    def _create(self, query: Query) -> QueryResult:
        if query.table in self.tables:
            return QueryResult()
        if not query.columns:
            raise StorageError("Cannot create a table without columns", query.table)

        auto = next((c.name for c in query.columns if c.auto_increment), None)
        self.tables[query.table] = InMemoryTable(
            columns=[c.name for c in query.columns],
            auto_column=auto,
            primary_key=query.primary_key_column or auto,
        )
        return QueryResult()

    def _select(self, table: InMemoryTable, query: Query) -> QueryResult:
        rows = [row for row in table.rows if _matches(row, query.conditions)]
        if query.order_by:
            column = query.order_by
            rows.sort(key=lambda row: (row.get(column) is not None, row.get(column)))
        if query.limit_count is not None:
            rows = rows[: query.limit_count]
        return QueryResult(rows=copy.deepcopy(rows))

    def _insert(self, table: InMemoryTable, query: Query) -> QueryResult:
        self._check_columns(table, query)
        row = {column: None for column in table.columns}
        row.update(query.values)

        if table.auto_column:
            if row.get(table.auto_column) is None:
                row[table.auto_column] = table.next_id
            table.next_id = max(table.next_id, int(row[table.auto_column]) + 1)

        key = table.primary_key
        if key and any(existing.get(key) == row[key] for existing in table.rows):
            raise StorageError(
                f"UNIQUE constraint failed: {query.table}.{key}", query.table
            )

        table.rows.append(row)
        last_id = row[table.auto_column] if table.auto_column else len(table.rows)
        return QueryResult(last_insert_id=last_id, rowcount=1)

    def _update(self, table: InMemoryTable, query: Query) -> QueryResult:
        self._check_columns(table, query)
        count = 0
        for row in table.rows:
            if _matches(row, query.conditions):
                row.update(query.values)
                count += 1
        return QueryResult(rowcount=count)

    def _delete(self, table: InMemoryTable, query: Query) -> QueryResult:
        kept = [row for row in table.rows if not _matches(row, query.conditions)]
        count = len(table.rows) - len(kept)
        table.rows = kept
        return QueryResult(rowcount=count)

    def _check_columns(self, table: InMemoryTable, query: Query) -> None:
        for column in query.values:
            if column not in table.columns:
                raise StorageError(
                    f"table {query.table} has no column named {column}", query.table
                )

    # Test helpers

    def set_connected(self, connected: bool) -> None:
        """Simulate the backend going away or coming back."""
        self._connected = connected

    def fail_next(self, error: Exception | None = None) -> None:
        """Make the next run() raise error (StorageError by default)."""
        self._failures.append(error or StorageError("injected failure"))

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Get a copy of a table's rows."""
        if table not in self.tables:
            return []
        return copy.deepcopy(self.tables[table].rows)

    def clear(self) -> None:
        """Drop all tables and history."""
        self.tables.clear()
        self.executed.clear()
        self._failures.clear()


def _matches(row: dict[str, Any], conditions: list[Condition]) -> bool:
    for condition in conditions:
        value = row.get(condition.column)
        if condition.value is None and condition.operator in ("=", "!="):
            if (value is None) != (condition.operator == "="):
                return False
            continue
        if value is None:
            return False
        try:
            if not _COMPARATORS[condition.operator](value, condition.value):
                return False
        except TypeError:
            return False
    return True
