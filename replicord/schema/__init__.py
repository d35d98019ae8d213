"""
Schema module for replicord.

This module provides model declarations:
- Field kinds and name normalization (FieldKind, normalize_name)
- The fluent Schema and ReplicationPolicy builders
- The model registry

Invariants:
    - Field and model names are normalized everywhere
    - A replicated model always has a condition predicate

How to change safely:
    - Add new field kinds with a storage type and a coercion
    - Keep Schema.to_dict() readable by older clients
"""

from .registry import Configurator, ModelFactory, ModelRegistry
from .replication import ReplicationPolicy
from .types import IDENTITY_FIELD, FieldKind, Schema, normalize_name, pluralize

__all__ = [
    "IDENTITY_FIELD",
    "Configurator",
    "FieldKind",
    "ModelFactory",
    "ModelRegistry",
    "ReplicationPolicy",
    "Schema",
    "normalize_name",
    "pluralize",
]
