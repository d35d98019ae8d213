"""
Replication context: the single object holding a node's state.

A Context owns the configuration, the project prefix, the model registry,
the write queue, the pending pull requests, the storage adapter (server)
and the transport. Every component receives the context in its
constructor; nothing lives at module level, so several independent
contexts can share one process (tests run a server and clients side by
side this way).

Invariants:
    - The role is fixed at construction
    - The channel name and table names derive from the current prefix
    - tick() only ever touches the store on a server

How to change safely:
    - Set the prefix before registering models; models keep the table name
      they were created with
    - Re-setting the prefix registers a new channel handler and leaves the
      old one in place

Example:
    >>> context = Context(ReplicordConfig(role=Role.SERVER), store=InMemoryStore())
    >>> context.set_prefix("test")
    >>> User = context.setup_model("User", lambda schema, rep: schema.string("name"))
    >>> User.table_name
    'test_users'
"""

from __future__ import annotations

import logging
from typing import Any

from .config import ReplicordConfig, Role
from .errors import UnknownModelError
from .orm.model import ClientModel, Model, ServerModel
from .replication.broadcaster import Broadcaster
from .replication.receiver import PendingRequests, Receiver
from .replication.transport import Transport
from .schema.registry import Configurator, ModelRegistry
from .schema.types import pluralize
from .store.base import StorageAdapter
from .write_queue import WriteQueue

logger = logging.getLogger(__name__)


class Context:
    """Process-local replication state for one node.

    Attributes:
        config: Node configuration
        role: Server or client
        prefix: Normalized prefix ("test" -> "test_")
        channel_name: Transport channel derived from the prefix
        registry: Registered models
        write_queue: Pending persistence operations (server)
        pending: Pending pull requests (client)
        broadcaster: Push and pull handling (server only)
        receiver: Request sending and push handling (client only)
    """

    def __init__(
        self,
        config: ReplicordConfig | None = None,
        store: StorageAdapter | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.config = config or ReplicordConfig()
        self.role = self.config.role
        self.store = store
        self.transport = transport

        self.registry = ModelRegistry()
        self.write_queue = WriteQueue(self)
        self.pending = PendingRequests()
        self.broadcaster: Broadcaster | None = None
        self.receiver: Receiver | None = None

        if self.is_server:
            self.broadcaster = Broadcaster(self)
            if transport is not None:
                transport.on_peer_connected(self.broadcaster.on_peer_connected)
        else:
            self.receiver = Receiver(self)

        self.prefix = ""
        self.channel_name = ""
        self.set_prefix(self.config.prefix)

    @property
    def is_server(self) -> bool:
        return self.role == Role.SERVER

    def set_prefix(self, prefix: str) -> None:
        """Set the project prefix and (re)register the channel handler."""
        if not isinstance(prefix, str) or not prefix.strip():
            raise ValueError("Prefix must be a non-empty string")

        if len(self.registry):
            logger.warning(
                "Prefix changed after models were registered; existing tables keep the old prefix",
                extra={"models": self.registry.names()},
            )

        self.prefix = prefix.strip().lower() + "_"
        self.channel_name = f"replicord_{self.prefix}.message"

        if self.transport is not None:
            handler = self.broadcaster.handle_message if self.is_server else self.receiver.handle_message
            self.transport.register_handler(self.channel_name, handler)
        logger.debug(f"Prefix set: {self.prefix}", extra={"channel": self.channel_name})

    def table_name(self, model_name: str) -> str:
        return self.prefix + pluralize(model_name.lower())

    def setup_model(self, name: str, configurator: Configurator) -> Model:
        """Declare a model.

        Args:
            name: Model name, usually PascalCase ("User")
            configurator: Called with (schema, replication)

        Returns:
            ServerModel on a server, ClientModel on a client

        Raises:
            MissingConditionError: If replication is enabled without a condition
            CallbackRequiredError: If configurator is not callable
        """
        variant = ServerModel if self.is_server else ClientModel
        return self.registry.setup_model(
            name,
            configurator,
            lambda model_name, schema, replication: variant(self, model_name, schema, replication),
        )

    def model(self, name: str) -> Model:
        """Look up a model by name.

        Raises:
            UnknownModelError: If no model is registered under name
        """
        model = self.registry.get(name)
        if model is None:
            raise UnknownModelError(name)
        return model

    def __getitem__(self, name: str) -> Model:
        return self.model(name)

    def tick(self) -> bool:
        """Run one scheduling tick. Returns True if a write was dispatched."""
        if not self.is_server:
            return False
        return self.write_queue.drain_one()

    async def start(self) -> None:
        """Connect the store (server) and start the transport."""
        if self.store is not None and self.is_server:
            await self.store.connect()
        if self.transport is not None:
            await self.transport.start()
        logger.info(f"Context started ({self.role.value})", extra={"channel": self.channel_name})

    async def close(self) -> None:
        self.pending.cancel_all()
        if self.transport is not None:
            await self.transport.close()
        if self.store is not None:
            await self.store.close()

    @property
    def stats(self) -> dict[str, Any]:
        """Get context statistics."""
        stats: dict[str, Any] = {
            "role": self.role.value,
            "models": len(self.registry),
            "pending_requests": len(self.pending),
        }
        if self.is_server:
            stats["write_queue"] = self.write_queue.stats
            stats["broadcaster"] = self.broadcaster.stats
        return stats
