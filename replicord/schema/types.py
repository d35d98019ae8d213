"""
Core type definitions for the replicord schema system.

This module defines the building blocks of a model declaration:
- FieldKind: The primitive type tags a field can carry
- normalize_name: Canonical snake_case form for field and model names
- Schema: Fluent builder mapping field names to kinds plus model flags

Invariants:
    - Field names are stored normalized; normalizing twice changes nothing
    - Field names are unique within a Schema (last declaration wins)
    - The identity column is always named "id" and is never declared by hand
    - Store-synchronized is the default; identity is the default

How to change safely:
    - New field kinds need a storage type, a validator and a coercion
    - Keep the wire form (to_dict/from_dict) backward compatible, clients
      built from an older schema push must still load

Example:
    >>> schema = Schema()
    >>> schema.string("name").string("steamID").integer("boxes")
    >>> list(schema.fields)
    ['name', 'steam_id', 'boxes']
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator
from enum import Enum
from typing import Any

from ..errors import CallbackRequiredError, FieldValidationError, SchemaError

IDENTITY_FIELD = "id"

# Record attributes a column would shadow
RESERVED_FIELDS = frozenset(
    {"persisted", "mark_persisted", "get", "to_dict", "merge", "save", "destroy"}
)

_SEPARATORS = re.compile(r"[\s\-]+")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_UNDERSCORE_RUNS = re.compile(r"_+")


def normalize_name(name: str) -> str:
    """Convert a field or model name to its canonical snake_case form.

    Args:
        name: Name as written by the application (camelCase, PascalCase,
            snake_case, dashed or spaced)

    Returns:
        Lowercase, underscore-separated name

    Raises:
        TypeError: If name is not a string
        SchemaError: If name is empty

    Example:
        >>> normalize_name("SteamID")
        'steam_id'
        >>> normalize_name("HTTPServer")
        'http_server'
    """
    if not isinstance(name, str):
        raise TypeError(f"Expected a string name, got {type(name).__name__}")

    text = _SEPARATORS.sub("_", name.strip())
    text = _ACRONYM_BOUNDARY.sub(r"\1_\2", text)
    text = _CAMEL_BOUNDARY.sub(r"\1_\2", text)
    text = _UNDERSCORE_RUNS.sub("_", text).lower()
    if not text:
        raise SchemaError("Name cannot be empty")
    return text


def pluralize(name: str) -> str:
    """Naive pluralization used for table names."""
    return name + "s"


class FieldKind(Enum):
    """Supported field types in a schema.

    These map to storage column types, validation rules and coercions for
    values read back from the store.
    """

    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    BOOLEAN = "boolean"

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")

    @property
    def sql_type(self) -> str:
        """Storage column type for this kind."""
        return _SQL_TYPES[self]

    def accepts(self, value: Any) -> bool:
        """Whether value is a valid in-memory value for this kind."""
        if value is None:
            return True
        if self in (FieldKind.STRING, FieldKind.TEXT):
            return isinstance(value, str)
        if self is FieldKind.INTEGER:
            return isinstance(value, int) and not isinstance(value, bool)
        return isinstance(value, bool)

    def coerce(self, value: Any) -> Any:
        """Convert a raw stored value to the in-memory type for this kind.

        Storage backends hand back booleans as 0/1 and may return numbers as
        strings; anything that cannot be converted is returned unchanged.
        """
        if value is None:
            return None
        try:
            if self is FieldKind.BOOLEAN:
                if isinstance(value, str):
                    return value.strip().lower() in ("1", "true", "t", "yes")
                return bool(value)
            if self is FieldKind.INTEGER:
                if isinstance(value, bool):
                    return int(value)
                return int(value)
        except (TypeError, ValueError):
            return value
        if self in (FieldKind.STRING, FieldKind.TEXT) and not isinstance(value, str):
            return str(value)
        return value


_SQL_TYPES = {
    FieldKind.STRING: "VARCHAR(255)",
    FieldKind.TEXT: "TEXT",
    FieldKind.INTEGER: "INTEGER",
    FieldKind.BOOLEAN: "TINYINT(1)",
}


class Schema:
    """Fluent declaration of a model's fields and storage flags.

    Every setter validates its argument and returns the same builder so
    declarations can be chained inside a model configurator.

    Attributes:
        fields: Ordered mapping of normalized field name to FieldKind
            (identity column excluded)
        has_identity: Whether the model gets an auto-incrementing "id"
        store_synchronized: Whether the in-memory buffer is the live view
        sync_callback: Called once the initial store load completes

    Example:
        >>> schema = Schema().string("name").integer("boxes").sync(False)
        >>> schema.store_synchronized
        False
    """

    def __init__(self) -> None:
        self.fields: dict[str, FieldKind] = {}
        self.has_identity = True
        self.store_synchronized = True
        self.sync_callback: Callable[[], Any] | None = None

    def _declare(self, name: str, kind: FieldKind) -> Schema:
        field_name = normalize_name(name)
        if field_name == IDENTITY_FIELD and self.has_identity:
            raise SchemaError(
                f"'{IDENTITY_FIELD}' is reserved for the identity column",
                field_name=field_name,
            )
        if field_name in RESERVED_FIELDS or field_name.startswith("_"):
            raise SchemaError(
                f"'{field_name}' is reserved by records and cannot be a field name",
                field_name=field_name,
            )
        self.fields[field_name] = kind
        return self

    def string(self, name: str) -> Schema:
        """Declare a short string field (VARCHAR(255))."""
        return self._declare(name, FieldKind.STRING)

    def text(self, name: str) -> Schema:
        """Declare a long text field."""
        return self._declare(name, FieldKind.TEXT)

    def integer(self, name: str) -> Schema:
        """Declare an integer field."""
        return self._declare(name, FieldKind.INTEGER)

    def boolean(self, name: str) -> Schema:
        """Declare a boolean field."""
        return self._declare(name, FieldKind.BOOLEAN)

    def identity(self, use: bool) -> Schema:
        """Enable or disable the auto-incrementing identity column."""
        _require_bool(use, "identity")
        if use and IDENTITY_FIELD in self.fields:
            raise SchemaError(
                f"'{IDENTITY_FIELD}' is already declared as a regular field",
                field_name=IDENTITY_FIELD,
            )
        self.has_identity = use
        return self

    id = identity

    def sync(self, value: bool) -> Schema:
        """Set whether all objects are kept in memory and mirrored to the store."""
        _require_bool(value, "sync")
        self.store_synchronized = value
        return self

    def on_sync(self, callback: Callable[[], Any]) -> Schema:
        """Set the callback run when the initial store load completes.

        Only called for store-synchronized models.
        """
        if not callable(callback):
            raise CallbackRequiredError(callback, "on_sync callback")
        self.sync_callback = callback
        return self

    def columns(self) -> Iterator[tuple[str, FieldKind]]:
        """Iterate over every stored column, identity first."""
        if self.has_identity:
            yield IDENTITY_FIELD, FieldKind.INTEGER
        yield from self.fields.items()

    def column_names(self) -> list[str]:
        """Names of every stored column, identity first."""
        return [name for name, _ in self.columns()]

    def kind_of(self, name: str) -> FieldKind | None:
        """Get the kind of a column, or None if it is not declared."""
        if name == IDENTITY_FIELD and self.has_identity:
            return FieldKind.INTEGER
        return self.fields.get(name)

    def has_column(self, name: str) -> bool:
        """Whether name is a stored column (identity included)."""
        return self.kind_of(name) is not None

    def validate_value(self, name: str, value: Any) -> None:
        """Check a value against a column's kind.

        Raises:
            FieldValidationError: If the value has the wrong type
        """
        kind = self.kind_of(name)
        if kind is not None and not kind.accepts(value):
            raise FieldValidationError(name, kind.value, value)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dictionary form pushed to clients."""
        return {
            "fields": {name: kind.value for name, kind in self.fields.items()},
            "identity": self.has_identity,
            "synchronized": self.store_synchronized,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schema:
        """Create from the dictionary form pushed by a server."""
        schema = cls()
        schema.has_identity = bool(data.get("identity", True))
        schema.store_synchronized = bool(data.get("synchronized", True))
        for name, kind in data.get("fields", {}).items():
            if name == IDENTITY_FIELD:
                continue
            schema.fields[normalize_name(name)] = FieldKind.from_str(kind)
        return schema

    def __repr__(self) -> str:
        fields = ", ".join(f"{n}:{k.value}" for n, k in self.columns())
        return f"Schema({fields}, synchronized={self.store_synchronized})"


def _require_bool(value: Any, setting: str) -> None:
    if not isinstance(value, bool):
        raise TypeError(f"Expected bool for '{setting}', got {type(value).__name__}")
