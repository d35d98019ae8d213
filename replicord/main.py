"""
replicord node - main entry point.

Starts one node in the configured role:
- server: storage adapter, websocket listener, write-queue tick loop
- client: websocket connection to the server

Models are declared by an application module named in REPLICORD_MODELS,
which must expose setup(context).

Usage:
    REPLICORD_ROLE=server REPLICORD_MODELS=myapp.models replicord

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Models are declared before the transport starts, so the first peer
      already sees every schema
    - The tick loop drains exactly one write per interval
    - Graceful shutdown stops the tick loop before closing the store

How to change safely:
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import sys

import json_log_formatter

from .config import ReplicordConfig, Role
from .context import Context
from .replication.transport import Transport
from .replication.websocket import WebSocketClientTransport, WebSocketServerTransport
from .store.base import create_store

logger = logging.getLogger(__name__)


def setup_logging(config: ReplicordConfig) -> None:
    """Configure logging based on configuration."""
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.server").setLevel(logging.WARNING)


def load_models(context: Context, module_path: str) -> None:
    """Import module_path and call its setup(context).

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the module has no setup function
    """
    module = importlib.import_module(module_path)
    setup = getattr(module, "setup", None)
    if not callable(setup):
        raise AttributeError(f"{module_path} has no setup(context) function")
    setup(context)
    logger.info(
        f"Loaded models from {module_path}",
        extra={"models": context.registry.names()},
    )


class Node:
    """replicord node orchestrator.

    Attributes:
        config: Node configuration
        context: Replication context (created in start())

    Example:
        >>> node = Node(config)
        >>> await node.start()
        >>> # node is serving
        >>> await node.stop()
    """

    def __init__(self, config: ReplicordConfig | None = None, transport: Transport | None = None) -> None:
        self.config = config or ReplicordConfig.from_env()
        self.context: Context | None = None
        self._transport = transport
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def _build_transport(self) -> Transport:
        if self._transport is not None:
            return self._transport
        if self.config.role == Role.SERVER:
            return WebSocketServerTransport(self.config.transport.host, self.config.transport.port)
        return WebSocketClientTransport(
            self.config.transport.server_url,
            dict(self.config.transport.client_attributes),
        )

    async def start(self) -> None:
        """Build the context, declare models and start serving."""
        if self._running:
            logger.warning("Node already running")
            return

        logger.info(f"Starting replicord {self.config.role.value}")
        self.config.log_config()

        store = create_store(self.config.store) if self.config.role == Role.SERVER else None
        self.context = Context(self.config, store=store, transport=self._build_transport())

        if self.config.models_module:
            load_models(self.context, self.config.models_module)

        await self.context.start()

        if self.context.is_server:
            self._tasks.append(asyncio.create_task(self._tick_loop()))

        self._running = True
        logger.info("replicord node started")

    async def run(self) -> None:
        """Start and block until shutdown is requested."""
        try:
            await self.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error(f"Node startup failed: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def _tick_loop(self) -> None:
        interval = self.config.tick_interval
        try:
            while True:
                self.context.tick()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Tick loop cancelled")

    async def stop(self) -> None:
        """Stop the node gracefully."""
        if not self._running:
            return

        logger.info("Stopping replicord node")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.context is not None:
            pending_writes = len(self.context.write_queue)
            if pending_writes:
                logger.warning(f"Stopping with {pending_writes} queued writes")
            await self.context.close()

        self._running = False
        logger.info("replicord node stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ReplicordConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    node = Node(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        node.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(node.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()
