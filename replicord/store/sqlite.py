"""
SQLite storage adapter.

Compiles Query objects into parameterized SQL and runs them on a single
SQLite connection.

Invariants:
    - Table and column names are validated identifiers and always quoted
    - Values are always bound as parameters, never interpolated
    - One connection per adapter, autocommit mode
    - An auto-increment column becomes INTEGER PRIMARY KEY AUTOINCREMENT

How to change safely:
    - Keep generated DDL idempotent (CREATE TABLE IF NOT EXISTS)
    - Test new statement shapes against the in-memory adapter's semantics
"""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any

from ..errors import StorageError, StoreNotConnectedError
from .base import Condition, Query, QueryKind, QueryResult, StorageAdapter

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SQL_TYPE = re.compile(r"^[A-Za-z]+(\(\d+\))?$")


def quote_identifier(name: str) -> str:
    """Quote a table or column name.

    Raises:
        StorageError: If name is not a plain identifier
    """
    if not _IDENTIFIER.match(name):
        raise StorageError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


class SqliteStore(StorageAdapter):
    """SQLite-backed storage adapter.

    Example:
        >>> store = SqliteStore("/var/lib/replicord/app.db")
        >>> await store.connect()
        >>> await store.create("ar_users").column("id", "INTEGER", True).run()
    """

    def __init__(self, path: str, busy_timeout_ms: int = 5000) -> None:
        """Initialize the adapter.

        Args:
            path: Database file, or ":memory:"
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = path
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()
        self.pending_tasks: set[asyncio.Task] = set()

    async def connect(self) -> None:
        if self._conn is not None:
            return

        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                self.path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open SQLite database {self.path}: {e}")

        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        self._conn = conn
        logger.info(f"Connected to SQLite database: {self.path}")

    async def close(self) -> None:
        await self.wait_pending()
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info(f"Closed SQLite database: {self.path}")

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def run(self, query: Query) -> QueryResult:
        if self._conn is None:
            raise StoreNotConnectedError()

        sql, params = self.compile(query)
        if sql is None:
            return QueryResult()

        async with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise StorageError(f"{query.kind.value} on {query.table} failed: {e}", query.table)

        logger.debug("Executed statement", extra={"sql": sql, "params": len(params)})
        return QueryResult(
            rows=rows,
            last_insert_id=cursor.lastrowid if query.kind == QueryKind.INSERT else None,
            rowcount=max(cursor.rowcount, 0),
        )

    def compile(self, query: Query) -> tuple[str | None, list[Any]]:
        """Translate a query into SQL and bound parameters.

        Returns (None, []) for statements that have nothing to do, such as an
        UPDATE without any columns.
        """
        table = quote_identifier(query.table)

        if query.kind == QueryKind.CREATE:
            return self._compile_create(query, table), []

        if query.kind == QueryKind.INSERT:
            if not query.values:
                return f"INSERT INTO {table} DEFAULT VALUES", []
            columns = ", ".join(quote_identifier(c) for c in query.values)
            marks = ", ".join("?" for _ in query.values)
            return f"INSERT INTO {table} ({columns}) VALUES ({marks})", list(query.values.values())

        where, params = self._compile_where(query.conditions)

        if query.kind == QueryKind.SELECT:
            sql = f"SELECT * FROM {table}{where}"
            if query.order_by:
                sql += f" ORDER BY {quote_identifier(query.order_by)} ASC"
            if query.limit_count is not None:
                sql += f" LIMIT {int(query.limit_count)}"
            return sql, params

        if query.kind == QueryKind.UPDATE:
            if not query.values:
                return None, []
            assignments = ", ".join(f"{quote_identifier(c)} = ?" for c in query.values)
            return f"UPDATE {table} SET {assignments}{where}", list(query.values.values()) + params

        if query.kind == QueryKind.DELETE:
            return f"DELETE FROM {table}{where}", params

        raise StorageError(f"Unsupported query kind: {query.kind}", query.table)

    def _compile_create(self, query: Query, table: str) -> str:
        definitions = []
        inline_key = None
        for column in query.columns:
            if not _SQL_TYPE.match(column.sql_type):
                raise StorageError(f"Invalid column type: {column.sql_type!r}", query.table)
            name = quote_identifier(column.name)
            if column.auto_increment:
                # SQLite only auto-increments an INTEGER PRIMARY KEY
                definitions.append(f"{name} INTEGER PRIMARY KEY AUTOINCREMENT")
                inline_key = column.name
            else:
                definitions.append(f"{name} {column.sql_type}")

        if query.primary_key_column and query.primary_key_column != inline_key:
            definitions.append(f"PRIMARY KEY ({quote_identifier(query.primary_key_column)})")

        if not definitions:
            raise StorageError("Cannot create a table without columns", query.table)
        return f"CREATE TABLE IF NOT EXISTS {table} ({', '.join(definitions)})"

    def _compile_where(self, conditions: list[Condition]) -> tuple[str, list[Any]]:
        if not conditions:
            return "", []

        clauses = []
        params: list[Any] = []
        for condition in conditions:
            column = quote_identifier(condition.column)
            if condition.value is None and condition.operator in ("=", "!="):
                clauses.append(f"{column} IS {'NOT ' if condition.operator == '!=' else ''}NULL")
                continue
            clauses.append(f"{column} {condition.operator} ?")
            params.append(condition.value)
        return " WHERE " + " AND ".join(clauses), params
