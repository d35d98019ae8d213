"""
Configuration management for replicord nodes.

All configuration is done via environment variables. Application code that
embeds replicord can also build the dataclasses directly.

Invariants:
    - All settings have sensible defaults for local development
    - A node runs exactly one role for its whole lifetime
    - The prefix is lowercase and never empty

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names prefixed with REPLICORD_ (except LOG_*)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Role(Enum):
    """Which side of the replication protocol a node plays."""

    SERVER = "server"
    CLIENT = "client"

    @classmethod
    def from_str(cls, value: str) -> Role:
        """Convert string representation to Role.

        Raises:
            ValueError: If value is not a valid role
        """
        for role in cls:
            if role.value == value.lower():
                return role
        raise ValueError(f"Invalid role '{value}'. Must be one of: server, client")


class StoreBackend(Enum):
    """Supported storage adapters."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class StoreConfig:
    """Storage adapter configuration (server role only).

    Attributes:
        backend: Which storage adapter to use
        sqlite_path: SQLite database file (":memory:" for a private database)
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.SQLITE
    sqlite_path: str = "replicord.db"
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("REPLICORD_STORE", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid REPLICORD_STORE '{backend_str}'. Must be one of: sqlite, memory"
            )
        return cls(
            backend=backend,
            sqlite_path=os.getenv("REPLICORD_SQLITE_PATH", "replicord.db"),
            busy_timeout_ms=int(os.getenv("REPLICORD_SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class TransportConfig:
    """Network transport configuration.

    Attributes:
        host: Address the server binds to
        port: Port the server binds to
        server_url: Base URL clients connect to (ws://host:port)
        client_attributes: Peer attributes a client announces, as
            (key, value) pairs; condition predicates see them on the server
    """

    host: str = "0.0.0.0"
    port: int = 8765
    server_url: str = "ws://127.0.0.1:8765"
    client_attributes: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_env(cls) -> TransportConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("REPLICORD_HOST", "0.0.0.0"),
            port=int(os.getenv("REPLICORD_PORT", "8765")),
            server_url=os.getenv("REPLICORD_SERVER_URL", "ws://127.0.0.1:8765"),
            client_attributes=parse_attributes(os.getenv("REPLICORD_CLIENT_ATTRIBUTES", "")),
        )


def parse_attributes(value: str) -> tuple[tuple[str, str], ...]:
    """Parse "key=value,key=value" into pairs.

    Raises:
        ValueError: If an item has no "="
    """
    pairs = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, val = item.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid REPLICORD_CLIENT_ATTRIBUTES item '{item}', expected key=value")
        pairs.append((key.strip(), val.strip()))
    return tuple(pairs)


@dataclass(frozen=True)
class ReplicationConfig:
    """Replication protocol tuning.

    Attributes:
        pull_timeout_seconds: Seconds before a pending pull request expires
            (0 disables expiry)
        broadcast_to_all_eligible: Send pushes to every eligible peer instead
            of a single representative peer
    """

    pull_timeout_seconds: float = 30.0
    broadcast_to_all_eligible: bool = False

    @classmethod
    def from_env(cls) -> ReplicationConfig:
        """Load configuration from environment variables."""
        return cls(
            pull_timeout_seconds=float(os.getenv("REPLICORD_PULL_TIMEOUT", "30")),
            broadcast_to_all_eligible=os.getenv("REPLICORD_BROADCAST_ALL", "false").lower()
            == "true",
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ReplicordConfig:
    """Complete node configuration.

    Attributes:
        role: Server or client
        prefix: Project-unique prefix for channel and table names
        tick_interval: Seconds between write-queue drains (server role)
        models_module: Optional dotted module path exposing setup(context)
        store: Storage adapter configuration
        transport: Network transport configuration
        replication: Replication protocol tuning
        observability: Logging configuration
    """

    role: Role = Role.SERVER
    prefix: str = "ar"
    tick_interval: float = 1.0
    models_module: str | None = None
    store: StoreConfig = field(default_factory=StoreConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ReplicordConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            role=Role.from_str(os.getenv("REPLICORD_ROLE", "server")),
            prefix=os.getenv("REPLICORD_PREFIX", "ar"),
            tick_interval=float(os.getenv("REPLICORD_TICK_INTERVAL", "1.0")),
            models_module=os.getenv("REPLICORD_MODELS") or None,
            store=StoreConfig.from_env(),
            transport=TransportConfig.from_env(),
            replication=ReplicationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.prefix or not self.prefix.strip():
            raise ValueError("REPLICORD_PREFIX cannot be empty")
        if self.tick_interval <= 0:
            raise ValueError("REPLICORD_TICK_INTERVAL must be positive")
        if self.replication.pull_timeout_seconds < 0:
            raise ValueError("REPLICORD_PULL_TIMEOUT cannot be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be one of: json, text")

        if self.role == Role.SERVER and self.store.backend == StoreBackend.SQLITE:
            directory = os.path.dirname(os.path.abspath(self.store.sqlite_path))
            if self.store.sqlite_path != ":memory:" and not os.path.isdir(directory):
                raise ValueError(f"SQLite directory does not exist: {directory}")

        if self.role == Role.CLIENT and self.replication.broadcast_to_all_eligible:
            logger.warning("REPLICORD_BROADCAST_ALL has no effect on a client node")

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Node configuration loaded",
            extra={
                "role": self.role.value,
                "prefix": self.prefix,
                "tick_interval": self.tick_interval,
                "models_module": self.models_module,
                "store": self.store.backend.value if self.role == Role.SERVER else None,
                "sqlite_path": self.store.sqlite_path
                if self.role == Role.SERVER and self.store.backend == StoreBackend.SQLITE
                else None,
                "bind": f"{self.transport.host}:{self.transport.port}"
                if self.role == Role.SERVER
                else None,
                "server_url": self.transport.server_url if self.role == Role.CLIENT else None,
                "client_attributes": dict(self.transport.client_attributes)
                if self.role == Role.CLIENT
                else None,
                "pull_timeout": self.replication.pull_timeout_seconds,
                "broadcast_all": self.replication.broadcast_to_all_eligible,
                "log_level": self.observability.log_level,
            },
        )
