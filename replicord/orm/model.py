"""
Models: a named schema + replication policy with its in-memory buffer.

Two variants share one interface and are chosen by the context's role:
- ServerModel owns the data. Writes go through the write queue, searches
  scan the buffer (synchronized) or query the store (unsynchronized), and
  saves are pushed to eligible peers.
- ClientModel is a read-only mirror. Searches become pull requests to the
  server and resolve asynchronously; pushed updates merge into its buffer.

Every model gets one find_by_<column> accessor per column, identity
included.

Invariants:
    - A model's name is normalized and never changes
    - new() assigns identity = len(buffer) + 1, so ids may repeat after a
      destroy()
    - Records created by store queries are not added to the buffer; only
      the initial full load of a synchronized model is
    - Unsynchronized searches always return an awaitable

How to change safely:
    - Keep both variants' search signatures identical; shared model
      definitions run on both roles
"""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..errors import CallbackRequiredError, ReadOnlyModelError, StoreNotConnectedError
from ..schema.types import IDENTITY_FIELD
from ..write_queue import WriteKind
from .query import (
    SEARCH_METHODS,
    SearchMethod,
    build_criteria,
    compile_select,
    first_record,
    parse_key,
    scan,
    scan_first,
)
from .record import Record

if TYPE_CHECKING:
    from ..context import Context
    from ..schema.replication import ReplicationPolicy
    from ..schema.types import Schema
    from ..store.base import QueryResult

logger = logging.getLogger(__name__)

Callback = Callable[[Any], Any]


def _check_callback(callback: Callback | None) -> None:
    if callback is not None and not callable(callback):
        raise CallbackRequiredError(callback)


class Model(ABC):
    """Shared capability interface of server and client models.

    Attributes:
        name: Normalized model name (wire and lookup key)
        schema: Field declarations and flags
        replication: Replication policy
        table_name: Store table backing this model
        buffer: Records held in memory, in insertion order
    """

    def __init__(
        self,
        context: Context,
        name: str,
        schema: Schema,
        replication: ReplicationPolicy,
    ) -> None:
        self.context = context
        self.name = name
        self.schema = schema
        self.replication = replication
        self.table_name = context.table_name(name)
        self.buffer: list[Record] = []

        for column in schema.column_names():
            setattr(self, f"find_by_{column}", functools.partial(self.find_by, column))

    def on_registered(self) -> None:
        """Hook run once the registry has stored this model."""

    def materialize(self, values: dict[str, Any], buffered: bool = False) -> Record:
        """Build a persisted record from a row or wire mapping."""
        record = Record(self, persisted=True)
        record.merge(values)
        if buffered:
            self.buffer.append(record)
        return record

    def find_in_buffer(self, identity: Any) -> Record | None:
        if identity is None:
            return None
        for record in self.buffer:
            if record.get(IDENTITY_FIELD) == identity:
                return record
        return None

    def search(
        self,
        verb: str,
        key: str | None = None,
        value: Any = None,
        callback: Callback | None = None,
    ) -> Any:
        """Run a verb by name, as peers request it."""
        method = SEARCH_METHODS[verb]
        if method.require_key:
            return getattr(self, verb)(key, value, callback=callback)
        return getattr(self, verb)(callback=callback)

    @abstractmethod
    def new(self, **values: Any) -> Record:
        ...

    @abstractmethod
    def all(self, callback: Callback | None = None) -> Any:
        ...

    @abstractmethod
    def first(self, callback: Callback | None = None) -> Any:
        ...

    @abstractmethod
    def find_by(self, *args: Any, callback: Callback | None = None) -> Any:
        ...

    @abstractmethod
    def where(self, *args: Any, callback: Callback | None = None) -> Any:
        ...

    @abstractmethod
    def save(self, record: Record) -> None:
        ...

    @abstractmethod
    def destroy(self, record: Record) -> None:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, buffered={len(self.buffer)})"


class ServerModel(Model):
    """Authoritative model living next to the store.

    Example:
        >>> User = context.setup_model("User", lambda s, r: s.string("name"))
        >>> user = User.new(name="`impulse")
        >>> user.save()
        >>> User.find_by_name("`impulse") is user
        True
    """

    def on_registered(self) -> None:
        if self.replication.enabled:
            self.context.broadcaster.broadcast_schema(self)
        self.context.write_queue.enqueue(WriteKind.SCHEMA_CREATE, self)

    def new(self, **values: Any) -> Record:
        record = Record(self)
        if self.schema.has_identity:
            record.id = len(self.buffer) + 1
        for key, value in values.items():
            setattr(record, key, value)
        self.buffer.append(record)
        return record

    def save(self, record: Record) -> None:
        self.context.write_queue.enqueue(WriteKind.OBJECT_UPSERT, self, record)

        if (
            self.schema.store_synchronized
            and self.replication.enabled
            and self.replication.push_on_create
        ):
            self.context.broadcaster.broadcast_object(self, record)

    def destroy(self, record: Record) -> None:
        for index, buffered in enumerate(self.buffer):
            if buffered is record:
                del self.buffer[index]
                break
        self.context.write_queue.enqueue(WriteKind.OBJECT_DELETE, self, record)

    def all(self, callback: Callback | None = None) -> Any:
        _check_callback(callback)
        if self.schema.store_synchronized:
            return _deliver(list(self.buffer), callback)
        return self._fetch(SEARCH_METHODS["all"], [], callback)

    def first(self, callback: Callback | None = None) -> Any:
        _check_callback(callback)
        if self.schema.store_synchronized:
            return _deliver(first_record(self), callback)
        return self._fetch(SEARCH_METHODS["first"], [], callback)

    def find_by(self, *args: Any, callback: Callback | None = None) -> Any:
        _check_callback(callback)
        criteria = build_criteria(self, args)
        if self.schema.store_synchronized:
            return _deliver(scan_first(self.buffer, criteria), callback)
        return self._fetch(SEARCH_METHODS["find_by"], criteria, callback)

    def where(self, *args: Any, callback: Callback | None = None) -> Any:
        _check_callback(callback)
        criteria = build_criteria(self, args)
        if self.schema.store_synchronized:
            return _deliver(scan(self.buffer, criteria), callback)
        return self._fetch(SEARCH_METHODS["where"], criteria, callback)

    def _fetch(
        self,
        method: SearchMethod,
        criteria: list,
        callback: Callback | None,
    ) -> asyncio.Future:
        store = self.context.store
        if store is None:
            raise StoreNotConnectedError("No storage adapter configured")

        future = asyncio.get_running_loop().create_future()

        def completed(result: QueryResult) -> None:
            records = [self.materialize(row) for row in result.rows]
            value: Any = records
            if method.single_result:
                value = records[0] if records else None
            if future.done():
                return
            future.set_result(value)
            if callback is not None:
                callback(value)

        def failed(error: Exception) -> None:
            if not future.done():
                future.set_exception(error)

        query = compile_select(store, self, method, criteria)
        query.on_complete(completed).on_error(failed).execute()
        return future

    def perform_sync(self) -> None:
        """Load every stored row into the buffer, then push and notify.

        Rows whose identity is already buffered merge into that record only
        if it was persisted. An unsaved record created before the load
        finished keeps its values and moves to the next free identity, so
        its pending insert does not collide with the stored row.
        """
        store = self.context.store
        if store is None:
            return

        def loaded(result: QueryResult) -> None:
            records = []
            displaced = []
            for row in result.rows:
                existing = None
                if self.schema.has_identity:
                    existing = self.find_in_buffer(row.get(IDENTITY_FIELD))
                if existing is not None and existing.persisted:
                    existing.merge(row)
                    records.append(existing)
                    continue
                if existing is not None:
                    displaced.append(existing)
                records.append(self.materialize(row, buffered=True))

            for record in displaced:
                self._renumber(record)

            logger.info(
                f"Synced model {self.name} from store",
                extra={"model": self.name, "rows": len(records), "renumbered": len(displaced)},
            )

            if self.replication.enabled and self.replication.push_existing_on_connect:
                self.context.broadcaster.broadcast_sync(self, records)

            if self.schema.sync_callback is not None:
                self.schema.sync_callback()

        store.select(self.table_name).on_complete(loaded).execute()

    def _renumber(self, record: Record) -> None:
        taken = [r.get(IDENTITY_FIELD) for r in self.buffer if r is not record]
        old = record.get(IDENTITY_FIELD)
        record.id = max((i for i in taken if isinstance(i, int)), default=0) + 1
        logger.warning(
            f"Unsaved {self.name} {old} collides with a stored row, renumbered to {record.id}",
            extra={"model": self.name, "old_id": old, "new_id": record.id},
        )
        if (
            self.replication.enabled
            and self.replication.push_on_create
            and self.context.write_queue.queued(record)
        ):
            self.context.broadcaster.broadcast_object(self, record)


class ClientModel(Model):
    """Read-only mirror of a server model.

    Searches return futures resolved when the server answers; pass
    callback= to be called with the same result.

    Example:
        >>> user = await context.model("User").find_by("boxes > ?", 100)
    """

    def new(self, **values: Any) -> Record:
        raise ReadOnlyModelError(self.name, "create")

    def save(self, record: Record) -> None:
        raise ReadOnlyModelError(self.name, "save")

    def destroy(self, record: Record) -> None:
        raise ReadOnlyModelError(self.name, "destroy")

    def all(self, callback: Callback | None = None) -> asyncio.Future:
        return self.context.receiver.request(self.name, ["all"], callback)

    def first(self, callback: Callback | None = None) -> asyncio.Future:
        return self.context.receiver.request(self.name, ["first"], callback)

    def find_by(self, *args: Any, callback: Callback | None = None) -> asyncio.Future:
        return self._keyed("find_by", args, callback)

    def where(self, *args: Any, callback: Callback | None = None) -> asyncio.Future:
        return self._keyed("where", args, callback)

    def _keyed(self, verb: str, args: tuple[Any, ...], callback: Callback | None) -> asyncio.Future:
        # the wire carries a single key/value pair
        if len(args) != 2:
            raise ValueError(f"{verb} on a client takes exactly one key/value pair")
        key, value = args
        parse_key(self.schema, self.name, key)
        return self.context.receiver.request(self.name, [verb, key, value], callback)

    def merge_update(self, values: dict[str, Any]) -> Record:
        """Merge a pushed object into the buffer by identity."""
        existing = None
        if self.schema.has_identity:
            existing = self.find_in_buffer(values.get(IDENTITY_FIELD))
        if existing is not None:
            existing.merge(values)
            return existing
        return self.materialize(values, buffered=True)


def _deliver(result: Any, callback: Callback | None) -> Any:
    if callback is not None:
        callback(result)
    return result
