"""
Base protocol and query builder for storage adapters.

This module defines the StorageAdapter protocol every backend implements,
along with the Query builder the write queue and the query translator use
to describe statements without writing SQL themselves.

Invariants:
    - Query.execute() returns immediately; completion callbacks fire later
      on the same event loop
    - A failing query never raises into the caller of execute(); the error
      is logged and handed to on_error callbacks
    - Adapters run one statement at a time
    - Adapters hold every dispatched query task until it finishes, and
      close() waits for them

How to change safely:
    - Protocol changes require updating all implementations
    - Add new builder methods with defaults so existing callers keep working
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import StoreConfig

logger = logging.getLogger(__name__)

OPERATORS = ("=", "!=", "<", "<=", ">", ">=")

_OPERATOR_ALIASES = {"==": "=", "<>": "!="}


def canonical_operator(operator: str) -> str:
    """Map operator spellings to the canonical set.

    Raises:
        ValueError: If operator is not supported
    """
    operator = _OPERATOR_ALIASES.get(operator, operator)
    if operator not in OPERATORS:
        raise ValueError(f"Unsupported operator '{operator}'. Valid: {list(OPERATORS)}")
    return operator


class QueryKind(Enum):
    """Statement kinds a storage adapter understands."""

    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CREATE = "create"


@dataclass(frozen=True)
class Condition:
    """One conjunctive filter of a query."""

    column: str
    value: Any
    operator: str = "="


@dataclass(frozen=True)
class ColumnDef:
    """One column of a CREATE statement."""

    name: str
    sql_type: str
    auto_increment: bool = False


@dataclass
class QueryResult:
    """Outcome of an executed query.

    Attributes:
        rows: Result rows as column->value mappings (SELECT only)
        last_insert_id: Identity assigned by the store (INSERT only)
        rowcount: Rows affected
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    last_insert_id: int | None = None
    rowcount: int = 0


class Query:
    """Statement builder bound to a storage adapter.

    Builder methods return the query so calls can be chained. Nothing
    touches the store until execute() (or run()) is called.

    Example:
        >>> query = store.select("ar_users").where("boxes", 100, ">").limit(1)
        >>> query.on_complete(lambda result: print(result.rows))
        >>> query.execute()
    """

    def __init__(self, adapter: StorageAdapter, kind: QueryKind, table: str) -> None:
        self.adapter = adapter
        self.kind = kind
        self.table = table
        self.conditions: list[Condition] = []
        self.values: dict[str, Any] = {}
        self.columns: list[ColumnDef] = []
        self.primary_key_column: str | None = None
        self.order_by: str | None = None
        self.limit_count: int | None = None
        self._on_complete: list[Callable[[QueryResult], Any]] = []
        self._on_error: list[Callable[[Exception], Any]] = []

    def where(self, column: str, value: Any, operator: str = "=") -> Query:
        self.conditions.append(Condition(column, value, canonical_operator(operator)))
        return self

    def order_by_asc(self, column: str) -> Query:
        self.order_by = column
        return self

    def limit(self, count: int) -> Query:
        if count < 0:
            raise ValueError("Limit cannot be negative")
        self.limit_count = count
        return self

    def set_column(self, column: str, value: Any) -> Query:
        """Set a value for INSERT/UPDATE statements."""
        self.values[column] = value
        return self

    def column(self, name: str, sql_type: str, auto_increment: bool = False) -> Query:
        """Add a column definition to a CREATE statement."""
        self.columns.append(ColumnDef(name, sql_type, auto_increment))
        return self

    def primary_key(self, column: str) -> Query:
        self.primary_key_column = column
        return self

    def on_complete(self, callback: Callable[[QueryResult], Any]) -> Query:
        self._on_complete.append(callback)
        return self

    def on_error(self, callback: Callable[[Exception], Any]) -> Query:
        self._on_error.append(callback)
        return self

    async def run(self) -> QueryResult:
        """Execute the query and return its result, raising on failure."""
        return await self.adapter.run(self)

    def execute(self) -> asyncio.Task[QueryResult | None]:
        """Dispatch the query on the running loop and return immediately."""
        task = asyncio.get_running_loop().create_task(self._dispatch())
        self.adapter.track(task)
        return task

    async def _dispatch(self) -> QueryResult | None:
        try:
            result = await self.run()
        except Exception as e:
            logger.error(
                f"Query failed: {e}",
                extra={"table": self.table, "kind": self.kind.value},
            )
            for callback in self._on_error:
                _invoke(callback, e)
            return None

        for callback in self._on_complete:
            _invoke(callback, result)
        return result

    def __repr__(self) -> str:
        return f"Query({self.kind.value} {self.table}, where={len(self.conditions)})"


def _invoke(callback: Callable[[Any], Any], arg: Any) -> None:
    try:
        callback(arg)
    except Exception as e:
        logger.error(f"Query callback raised: {e}", exc_info=True)


@runtime_checkable
class StorageAdapter(Protocol):
    """Protocol for storage backends.

    Backends implement connect/close/is_connected and run(); the statement
    factories and task tracking below are shared. A backend creates an
    empty pending_tasks set in __init__ and awaits wait_pending() at the
    start of close().

    Attributes:
        pending_tasks: Dispatched query tasks that have not finished

    Example:
        >>> store = SqliteStore("replicord.db")
        >>> await store.connect()
        >>> result = await store.select("ar_users").limit(1).run()
    """

    pending_tasks: set[asyncio.Task]

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StorageError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether queries can currently be executed."""
        ...

    @abstractmethod
    async def run(self, query: Query) -> QueryResult:
        """Execute a query.

        Raises:
            StoreNotConnectedError: If not connected
            StorageError: If the statement fails
        """
        ...

    def track(self, task: asyncio.Task) -> None:
        """Hold a dispatched query task until it completes."""
        self.pending_tasks.add(task)
        task.add_done_callback(self.pending_tasks.discard)

    async def wait_pending(self) -> None:
        """Wait for dispatched queries, including any their callbacks dispatch."""
        while self.pending_tasks:
            await asyncio.gather(*list(self.pending_tasks), return_exceptions=True)

    def select(self, table: str) -> Query:
        return Query(self, QueryKind.SELECT, table)

    def insert(self, table: str) -> Query:
        return Query(self, QueryKind.INSERT, table)

    def update(self, table: str) -> Query:
        return Query(self, QueryKind.UPDATE, table)

    def delete(self, table: str) -> Query:
        return Query(self, QueryKind.DELETE, table)

    def create(self, table: str) -> Query:
        """Create-table-if-absent statement."""
        return Query(self, QueryKind.CREATE, table)


def create_store(config: StoreConfig) -> StorageAdapter:
    """Factory function to create a storage adapter from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryStore
    from .sqlite import SqliteStore

    if config.backend == StoreBackend.SQLITE:
        return SqliteStore(config.sqlite_path, busy_timeout_ms=config.busy_timeout_ms)
    elif config.backend == StoreBackend.MEMORY:
        return InMemoryStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.backend}")
