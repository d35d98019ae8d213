"""
Model registry.

The ModelRegistry binds normalized model names to Model instances and
runs model setup: build a fresh Schema and ReplicationPolicy, hand them to
the application's configurator, validate, construct the role-specific
Model and let it announce itself.

Invariants:
    - Names are normalized before every lookup and registration
    - Re-registering a name replaces the previous model and its buffer
    - The replication policy is validated before the model exists, so a
      failed setup leaves no queued writes and sends no messages

How to change safely:
    - Keep setup_model's order (configure, validate, register, announce)

Example:
    >>> registry = ModelRegistry()
    >>> model = registry.setup_model("User", configure_user, factory)
    >>> registry.get("user") is model
    True
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from ..errors import CallbackRequiredError, SchemaError
from .replication import ReplicationPolicy
from .types import Schema, normalize_name

if TYPE_CHECKING:
    from ..orm.model import Model

logger = logging.getLogger(__name__)

Configurator = Callable[[Schema, ReplicationPolicy], Any]
ModelFactory = Callable[[str, Schema, ReplicationPolicy], "Model"]


class ModelRegistry:
    """Registry of all models known to a context.

    Thread-safety:
        Registration takes an internal lock; lookups do not.
    """

    def __init__(self) -> None:
        self._models: dict[str, Model] = {}
        self._lock = threading.Lock()

    def setup_model(self, name: str, configurator: Configurator, factory: ModelFactory) -> Model:
        """Configure, validate and register a model.

        Args:
            name: Model name (normalized, e.g. "User" -> "user")
            configurator: Called with (schema, replication) to declare the model
            factory: Builds the role-specific Model

        Returns:
            The registered model

        Raises:
            TypeError: If name is not a string
            CallbackRequiredError: If configurator is not callable
            MissingConditionError: If replication is enabled without a condition
        """
        model_name = normalize_name(name)
        if not callable(configurator):
            raise CallbackRequiredError(configurator, "model configurator")

        schema = Schema()
        replication = ReplicationPolicy()
        configurator(schema, replication)
        replication.validate(model_name)

        model = factory(model_name, schema, replication)
        self.register(model)
        model.on_registered()
        return model

    def register(self, model: Model) -> None:
        """Store a model, replacing any previous one with the same name."""
        with self._lock:
            if model.name in self._models:
                logger.warning(
                    f"Model '{model.name}' re-registered, previous buffer discarded",
                    extra={"model": model.name},
                )
            self._models[model.name] = model
            logger.debug(f"Registered model: {model.name} (table={model.table_name})")

    def get(self, name: str) -> Model | None:
        """Get a model by name, or None."""
        try:
            return self._models.get(normalize_name(name))
        except (TypeError, SchemaError):
            return None

    def names(self) -> list[str]:
        return list(self._models)

    def clear(self) -> None:
        with self._lock:
            self._models.clear()

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[Model]:
        return iter(list(self._models.values()))

    def __len__(self) -> int:
        return len(self._models)

    def to_dict(self) -> dict[str, Any]:
        """Summarize every model (schema plus replication flags)."""
        return {
            name: {
                "table": model.table_name,
                "schema": model.schema.to_dict(),
                "replicated": model.replication.enabled,
                "buffered": len(model.buffer),
            }
            for name, model in self._models.items()
        }
