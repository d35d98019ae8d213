"""
Query translator: search verbs, criteria parsing, buffer scans and store
query compilation.

The same verbs (all, first, find_by, where) run in two modes:
- Store-synchronized models scan the in-memory buffer
- Unsynchronized models compile to a SELECT on the storage adapter

Criteria keys are either a plain field name (equality) or an expression
"<field> <op> ?" where op is one of = == != <> < <= > >=.

Invariants:
    - Only the verbs in SEARCH_METHODS exist; peers cannot call anything else
    - Buffer equality compares string forms (9001 matches "9001")
    - A field holding None never matches any criterion
    - Materialization keeps only declared columns and skips NULLs
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import UnknownFieldError
from ..schema.types import IDENTITY_FIELD, normalize_name
from ..store.base import Query, canonical_operator

if TYPE_CHECKING:
    from ..schema.types import Schema
    from ..store.base import StorageAdapter
    from .model import Model
    from .record import Record

_EXPRESSION = re.compile(r"^\s*([^\s<>=!?]+)\s*(==|=|!=|<>|<=|>=|<|>)\s*\?\s*$")


@dataclass(frozen=True)
class SearchMethod:
    """A search verb.

    Attributes:
        name: Verb name as sent on the wire
        require_key: Whether the verb takes a key/value criterion
        single_result: Whether the verb yields one record (or None)
    """

    name: str
    require_key: bool
    single_result: bool


SEARCH_METHODS: dict[str, SearchMethod] = {
    method.name: method
    for method in (
        SearchMethod("all", require_key=False, single_result=False),
        SearchMethod("first", require_key=False, single_result=True),
        SearchMethod("find_by", require_key=True, single_result=True),
        SearchMethod("where", require_key=True, single_result=False),
    )
}


@dataclass(frozen=True)
class Criterion:
    """One field comparison."""

    field: str
    operator: str
    value: Any

    def matches(self, record: Record) -> bool:
        return compare(record.get(self.field), self.operator, self.value)


def parse_key(schema: Schema, model_name: str, key: str) -> tuple[str, str]:
    """Split a criteria key into (column, operator).

    Raises:
        TypeError: If key is not a string
        ValueError: If the operator is not supported
        UnknownFieldError: If the field is not a declared column

    Example:
        >>> parse_key(schema, "user", "boxes > ?")
        ('boxes', '>')
    """
    if not isinstance(key, str):
        raise TypeError(f"Criteria key must be a string, got {type(key).__name__}")

    match = _EXPRESSION.match(key)
    if match:
        field_name, operator = match.group(1), canonical_operator(match.group(2))
    else:
        field_name, operator = key, "="

    column = normalize_name(field_name)
    if not schema.has_column(column):
        suggestions = difflib.get_close_matches(column, schema.column_names(), n=3, cutoff=0.6)
        raise UnknownFieldError(field_name, model_name, suggestions)
    return column, operator


def build_criteria(model: Model, args: tuple[Any, ...]) -> list[Criterion]:
    """Build criteria from alternating key/value arguments.

    Raises:
        ValueError: If args has an odd length or is empty
    """
    if not args or len(args) % 2:
        raise ValueError("Expected alternating key/value arguments")

    criteria = []
    for key, value in zip(args[::2], args[1::2]):
        column, operator = parse_key(model.schema, model.name, key)
        criteria.append(Criterion(column, operator, value))
    return criteria


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def compare(left: Any, operator: str, right: Any) -> bool:
    """Evaluate left <operator> right with the buffer's loose semantics."""
    if left is None or right is None:
        return False

    if operator == "=":
        return str(left) == str(right)
    if operator == "!=":
        return str(left) != str(right)

    a, b = _as_number(left), _as_number(right)
    if a is None or b is None:
        a, b = str(left), str(right)
    if operator == "<":
        return a < b
    if operator == "<=":
        return a <= b
    if operator == ">":
        return a > b
    return a >= b


def scan(records: list[Record], criteria: list[Criterion]) -> list[Record]:
    """All records matching every criterion, in buffer order."""
    return [record for record in records if all(c.matches(record) for c in criteria)]


def scan_first(records: list[Record], criteria: list[Criterion]) -> Record | None:
    for record in records:
        if all(c.matches(record) for c in criteria):
            return record
    return None


def first_record(model: Model) -> Record | None:
    """Lowest-identity record, or the earliest appended without identity."""
    if not model.buffer:
        return None
    if not model.schema.has_identity:
        return model.buffer[0]
    with_id = [record for record in model.buffer if record.get(IDENTITY_FIELD) is not None]
    if not with_id:
        return model.buffer[0]
    return min(with_id, key=lambda record: record.get(IDENTITY_FIELD))


def compile_select(
    store: StorageAdapter,
    model: Model,
    method: SearchMethod,
    criteria: list[Criterion],
) -> Query:
    """Translate a verb and its criteria into a store SELECT."""
    query = store.select(model.table_name)
    for criterion in criteria:
        query.where(criterion.field, criterion.value, criterion.operator)
    if method.name == "first" and model.schema.has_identity:
        query.order_by_asc(IDENTITY_FIELD)
    if method.single_result:
        query.limit(1)
    return query
