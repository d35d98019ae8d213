"""
replicord - in-process ORM with client/server object replication.

This package lets independent consumers share one relational store
without naming collisions, and keeps selected models mirrored from a
server node to its client nodes:
- Schemas and replication policies declared per model
- An in-memory buffer of objects per model
- A write queue draining one persistence operation per tick
- A framed replication protocol with correlated pull requests

Architecture:
    ┌─────────────┐   save()   ┌─────────────┐  1 / tick  ┌─────────────┐
    │ ServerModel │───────────▶│ Write Queue │───────────▶│   Storage   │
    │  (buffer)   │            └─────────────┘            │  (SQLite)   │
    └──────┬──────┘                                       └─────────────┘
           │ push (condition-gated)
           ▼
    ┌─────────────┐  SCHEMA / UPDATE / SYNC  ┌─────────────┐
    │ Broadcaster │─────────────────────────▶│  Receiver   │
    │  (server)   │◀─────────────────────────│  (client)   │
    └─────────────┘   REQUEST (correlated)   └──────┬──────┘
                                                    │
                                                    ▼
                                             ┌─────────────┐
                                             │ ClientModel │
                                             │  (mirror)   │
                                             └─────────────┘

Invariants:
    - All state hangs off a Context; nothing is process-global
    - The write queue is the only path from models to the store
    - Peers only ever see models whose condition predicate accepts them

How to change safely:
    - Wire format changes go through replication/protocol.py only
    - Declare models before starting the transport

Version: see _version.py.
"""

from ._version import __version__
from .config import ReplicordConfig, Role
from .context import Context
from .errors import (
    CallbackRequiredError,
    FieldValidationError,
    MissingConditionError,
    ProtocolError,
    ReadOnlyModelError,
    ReplicordError,
    RequestTimeoutError,
    SchemaError,
    SetupError,
    StorageError,
    StoreNotConnectedError,
    UnknownFieldError,
    UnknownModelError,
)
from .orm import ClientModel, Model, Record, ServerModel
from .replication import Peer
from .schema import FieldKind, ReplicationPolicy, Schema

__all__ = [
    "__version__",
    # Core
    "Context",
    "ReplicordConfig",
    "Role",
    # Declarations
    "FieldKind",
    "ReplicationPolicy",
    "Schema",
    # Objects
    "ClientModel",
    "Model",
    "Record",
    "ServerModel",
    "Peer",
    # Errors
    "CallbackRequiredError",
    "FieldValidationError",
    "MissingConditionError",
    "ProtocolError",
    "ReadOnlyModelError",
    "ReplicordError",
    "RequestTimeoutError",
    "SchemaError",
    "SetupError",
    "StorageError",
    "StoreNotConnectedError",
    "UnknownFieldError",
    "UnknownModelError",
]
