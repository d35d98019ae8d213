"""
In-memory representation of one row.

A Record exposes its model's columns as attributes. Values live in an
ordered dict keyed by column name; assigning a name the schema does not
declare is an error instead of silently creating a new attribute.

Invariants:
    - Keys of a record are always a subset of its schema's columns
    - persisted is False until the first successful store write
    - Field names are normalized on access, so record.steamID and
      record.steam_id are the same field
    - The owning model and the persisted flag live outside the column
      namespace; a field named "model" is an ordinary column
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING, Any

from ..errors import UnknownFieldError
from ..schema.types import normalize_name

if TYPE_CHECKING:
    from .model import Model

_INTERNAL = frozenset({"_model", "_persisted", "_values"})


class Record:
    """One object of a model.

    Example:
        >>> user = context.model("User").new()
        >>> user.name = "`impulse"
        >>> user.boxes = 9001
        >>> user.save()
    """

    def __init__(self, model: Model, persisted: bool = False) -> None:
        object.__setattr__(self, "_model", model)
        object.__setattr__(self, "_persisted", persisted)
        object.__setattr__(self, "_values", {name: None for name in model.schema.column_names()})

    @property
    def persisted(self) -> bool:
        """Whether the record has been written to the store."""
        return self._persisted

    def mark_persisted(self) -> None:
        object.__setattr__(self, "_persisted", True)

    def _column(self, name: str) -> str:
        column = normalize_name(name)
        if column not in self._values:
            suggestions = difflib.get_close_matches(column, list(self._values), n=3, cutoff=0.6)
            raise UnknownFieldError(name, self._model.name, suggestions)
        return column

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self._values[self._column(name)]

    def __setattr__(self, name: str, value: Any) -> None:
        if name in _INTERNAL:
            object.__setattr__(self, name, value)
            return
        column = self._column(name)
        self._model.schema.validate_value(column, value)
        self._values[column] = value

    def __getitem__(self, name: str) -> Any:
        return self._values[self._column(name)]

    def __setitem__(self, name: str, value: Any) -> None:
        self.__setattr__(name, value)

    def get(self, name: str, default: Any = None) -> Any:
        value = self._values.get(normalize_name(name))
        return default if value is None else value

    def to_dict(self) -> dict[str, Any]:
        """Column values, identity first."""
        return dict(self._values)

    def merge(self, values: dict[str, Any]) -> None:
        """Assign values coming from storage or the wire.

        Unknown columns are skipped and values are coerced to the column's
        kind; None values are skipped so they never clear a known value.
        """
        schema = self._model.schema
        for key, value in values.items():
            if value is None:
                continue
            column = normalize_name(key)
            kind = schema.kind_of(column)
            if kind is None:
                continue
            self._values[column] = kind.coerce(value)

    def save(self) -> None:
        """Persist this record (and push it to peers where applicable)."""
        self._model.save(self)

    def destroy(self) -> None:
        """Remove this record from memory and the store."""
        self._model.destroy(self)

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"<{self._model.name} {fields}>"
