"""
Transport protocol and in-process transport.

A transport moves opaque frames between one server and its peers and
tells the server who is connected. The replication layer never sees
sockets, only Peer values and bytes.

Invariants:
    - send() never blocks and never raises for a vanished peer
    - Handlers run on the event loop thread, one frame at a time
    - peers() lists connected peers in connection order

How to change safely:
    - Protocol changes require updating all implementations
    - Keep handler exceptions contained; a bad frame must not kill the
      receive loop
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

MessageHandler = Callable[["Peer | None", bytes], Any]
PeerCallback = Callable[["Peer"], Any]


@dataclass(frozen=True)
class Peer:
    """A connected remote node as seen by the server.

    Attributes:
        peer_id: Unique id for the lifetime of the connection
        attributes: Free-form properties supplied at connect time; condition
            predicates usually inspect these
    """

    peer_id: str
    attributes: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)


@runtime_checkable
class Transport(Protocol):
    """Protocol for frame transports.

    Example:
        >>> transport.register_handler("replicord_ar_.message", on_frame)
        >>> await transport.start()
        >>> transport.send("replicord_ar_.message", frame, peer)
    """

    @abstractmethod
    async def start(self) -> None:
        """Start listening (server) or connect (client)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    def peers(self) -> list[Peer]:
        """Currently connected peers (empty on clients)."""
        ...

    @abstractmethod
    def is_connected(self, peer: Peer) -> bool:
        """Whether peer is still connected (always False on clients)."""
        ...

    @abstractmethod
    def send(self, channel: str, data: bytes, peer: Peer | None = None) -> None:
        """Queue a frame for delivery.

        On a server, peer selects the recipient (None sends to every peer).
        On a client, frames always go to the server and peer is ignored.
        """
        ...

    @abstractmethod
    def register_handler(self, channel: str, handler: MessageHandler) -> None:
        """Route frames arriving on channel to handler(peer, data)."""
        ...

    @abstractmethod
    def on_peer_connected(self, callback: PeerCallback) -> None:
        ...


def dispatch(handlers: dict[str, MessageHandler], channel: str, peer: Peer | None, data: bytes) -> None:
    """Run the handler registered for channel, containing its errors."""
    handler = handlers.get(channel)
    if handler is None:
        logger.debug(f"No handler for channel {channel}, dropping frame")
        return
    try:
        handler(peer, data)
    except Exception as e:
        logger.error(f"Handler for {channel} raised: {e}", exc_info=True)


def notify_connected(callbacks: list[PeerCallback], peer: Peer) -> None:
    for callback in callbacks:
        try:
            callback(peer)
        except Exception as e:
            logger.error(f"Peer connect callback raised: {e}", exc_info=True)


class LocalNetwork:
    """In-process network joining one server transport and many clients.

    Frames are delivered with loop.call_soon, so a send never re-enters the
    receiver synchronously. Every frame is recorded for inspection.

    Example:
        >>> network = LocalNetwork()
        >>> server = network.server_transport()
        >>> client = network.client_transport({"admin": True})
        >>> await server.start(); await client.start()
    """

    def __init__(self) -> None:
        self.server: LocalServerTransport | None = None
        self.frames: list[tuple[str, str, str, bytes]] = []
        self._ids = itertools.count(1)

    def server_transport(self) -> LocalServerTransport:
        if self.server is None:
            self.server = LocalServerTransport(self)
        return self.server

    def client_transport(self, attributes: Mapping[str, Any] | None = None) -> LocalClientTransport:
        return LocalClientTransport(self, attributes)

    def next_peer_id(self) -> str:
        return f"peer-{next(self._ids)}"

    def record(self, source: str, target: str, channel: str, data: bytes) -> None:
        self.frames.append((source, target, channel, data))

    def frames_to(self, target: str) -> list[bytes]:
        """Frames delivered to target ("server" or a peer id)."""
        return [data for _, to, _, data in self.frames if to == target]


class LocalServerTransport(Transport):
    """Server end of a LocalNetwork."""

    def __init__(self, network: LocalNetwork) -> None:
        self.network = network
        self.sent: list[tuple[str, Peer, bytes]] = []
        self._handlers: dict[str, MessageHandler] = {}
        self._connect_callbacks: list[PeerCallback] = []
        self._clients: dict[str, LocalClientTransport] = {}
        self._peers: dict[str, Peer] = {}
        self._running = False

    async def start(self) -> None:
        self._running = True
        logger.info("Local server transport started")

    async def close(self) -> None:
        self._running = False
        for client in list(self._clients.values()):
            client.disconnected()
        self._clients.clear()
        self._peers.clear()

    def peers(self) -> list[Peer]:
        return list(self._peers.values())

    def send(self, channel: str, data: bytes, peer: Peer | None = None) -> None:
        targets = [peer] if peer is not None else self.peers()
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for target in targets:
            client = self._clients.get(target.peer_id)
            if client is None:
                logger.debug(f"Peer {target.peer_id} is gone, dropping frame")
                continue
            self.sent.append((channel, target, data))
            self.network.record("server", target.peer_id, channel, data)
            loop.call_soon(client.deliver, channel, data)

    def register_handler(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel] = handler

    def on_peer_connected(self, callback: PeerCallback) -> None:
        self._connect_callbacks.append(callback)

    def is_connected(self, peer: Peer) -> bool:
        return peer.peer_id in self._peers

    def attach(self, client: LocalClientTransport) -> Peer:
        if not self._running:
            raise ConnectionError("Local server transport is not running")
        peer = Peer(self.network.next_peer_id(), dict(client.attributes))
        self._clients[peer.peer_id] = client
        self._peers[peer.peer_id] = peer
        logger.info(f"Peer connected: {peer.peer_id}", extra={"peer_id": peer.peer_id})
        asyncio.get_running_loop().call_soon(notify_connected, self._connect_callbacks, peer)
        return peer

    def detach(self, peer: Peer) -> None:
        self._clients.pop(peer.peer_id, None)
        if self._peers.pop(peer.peer_id, None) is not None:
            logger.info(f"Peer disconnected: {peer.peer_id}", extra={"peer_id": peer.peer_id})

    def deliver(self, channel: str, peer: Peer, data: bytes) -> None:
        if peer.peer_id not in self._peers:
            return
        dispatch(self._handlers, channel, peer, data)


class LocalClientTransport(Transport):
    """Client end of a LocalNetwork."""

    def __init__(self, network: LocalNetwork, attributes: Mapping[str, Any] | None = None) -> None:
        self.network = network
        self.attributes = dict(attributes or {})
        self.peer: Peer | None = None
        self.sent: list[tuple[str, bytes]] = []
        self._handlers: dict[str, MessageHandler] = {}

    async def start(self) -> None:
        if self.network.server is None:
            raise ConnectionError("No server on this local network")
        self.peer = self.network.server.attach(self)

    async def close(self) -> None:
        if self.peer is not None and self.network.server is not None:
            self.network.server.detach(self.peer)
        self.peer = None

    def disconnected(self) -> None:
        self.peer = None

    @property
    def connected(self) -> bool:
        return self.peer is not None

    def peers(self) -> list[Peer]:
        return []

    def is_connected(self, peer: Peer) -> bool:
        return False

    def send(self, channel: str, data: bytes, peer: Peer | None = None) -> None:
        server = self.network.server
        if self.peer is None or server is None:
            logger.warning("Client transport not connected, dropping frame")
            return
        self.sent.append((channel, data))
        self.network.record(self.peer.peer_id, "server", channel, data)
        asyncio.get_running_loop().call_soon(server.deliver, channel, self.peer, data)

    def register_handler(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel] = handler

    def on_peer_connected(self, callback: PeerCallback) -> None:
        pass

    def deliver(self, channel: str, data: bytes) -> None:
        if self.peer is None:
            return
        dispatch(self._handlers, channel, None, data)
