"""
WebSocket transport built on aiohttp.

The server exposes one websocket route per channel (GET /<channel>). A
client connects to the channel it registered a handler for and passes its
peer attributes in the query string; the server hands them to condition
predicates as Peer.attributes (values arrive as strings).

Invariants:
    - Frames are sent as binary websocket messages, one frame per message
    - Each connection has a single writer task, so frames to one peer are
      delivered in send() order
    - A peer disappears from peers() as soon as its socket closes

How to change safely:
    - Keep the route shape /<channel>; deployed clients build it themselves
    - Test reconnect behavior against a real server, not only LocalNetwork
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp import web

from .transport import (
    MessageHandler,
    Peer,
    PeerCallback,
    Transport,
    dispatch,
    notify_connected,
)

logger = logging.getLogger(__name__)


@dataclass
class _Connection:
    channel: str
    socket: Any
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)
    writer: asyncio.Task | None = None


async def _drain(connection: _Connection, label: str) -> None:
    while True:
        data = await connection.outbox.get()
        try:
            await connection.socket.send_bytes(data)
        except (ConnectionResetError, RuntimeError) as e:
            logger.warning(f"Send to {label} failed: {e}")
            return


class WebSocketServerTransport(Transport):
    """Websocket server accepting replication peers.

    Example:
        >>> transport = WebSocketServerTransport("0.0.0.0", 8765)
        >>> transport.register_handler("replicord_ar_.message", on_frame)
        >>> await transport.start()
    """

    def __init__(self, host: str = "0.0.0.0", port: int = 8765, heartbeat: float = 30.0) -> None:
        self.host = host
        self.port = port
        self.heartbeat = heartbeat
        self._handlers: dict[str, MessageHandler] = {}
        self._connect_callbacks: list[PeerCallback] = []
        self._connections: dict[str, _Connection] = {}
        self._peers: dict[str, Peer] = {}
        self._runner: web.AppRunner | None = None

        self.app = web.Application()
        self.app.router.add_get("/{channel}", self._handle_socket)

    async def start(self) -> None:
        if self._runner is not None:
            return
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"WebSocket transport listening on {self.host}:{self.port}")

    async def close(self) -> None:
        for connection in list(self._connections.values()):
            await connection.socket.close()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("WebSocket transport stopped")

    def peers(self) -> list[Peer]:
        return list(self._peers.values())

    def send(self, channel: str, data: bytes, peer: Peer | None = None) -> None:
        targets = [peer] if peer is not None else self.peers()
        for target in targets:
            connection = self._connections.get(target.peer_id)
            if connection is None or connection.socket.closed:
                logger.debug(f"Peer {target.peer_id} is gone, dropping frame")
                continue
            if connection.channel != channel:
                logger.warning(
                    f"Peer {target.peer_id} is on channel {connection.channel}, not {channel}"
                )
                continue
            connection.outbox.put_nowait(data)

    def register_handler(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel] = handler

    def on_peer_connected(self, callback: PeerCallback) -> None:
        self._connect_callbacks.append(callback)

    def is_connected(self, peer: Peer) -> bool:
        return peer.peer_id in self._peers

    async def _handle_socket(self, request: web.Request) -> web.StreamResponse:
        channel = request.match_info["channel"]
        if channel not in self._handlers:
            raise web.HTTPNotFound(text=f"Unknown channel: {channel}")

        socket = web.WebSocketResponse(heartbeat=self.heartbeat)
        await socket.prepare(request)

        peer = Peer(uuid.uuid4().hex, dict(request.query))
        connection = _Connection(channel, socket)
        connection.writer = asyncio.create_task(_drain(connection, peer.peer_id))
        self._connections[peer.peer_id] = connection
        self._peers[peer.peer_id] = peer
        logger.info(
            f"Peer connected: {peer.peer_id}",
            extra={"peer_id": peer.peer_id, "remote": request.remote},
        )
        notify_connected(self._connect_callbacks, peer)

        try:
            async for message in socket:
                if message.type == aiohttp.WSMsgType.BINARY:
                    dispatch(self._handlers, channel, peer, message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Socket error from {peer.peer_id}: {socket.exception()}")
        finally:
            self._peers.pop(peer.peer_id, None)
            self._connections.pop(peer.peer_id, None)
            connection.writer.cancel()
            logger.info(f"Peer disconnected: {peer.peer_id}", extra={"peer_id": peer.peer_id})

        return socket


class WebSocketClientTransport(Transport):
    """Websocket client connecting to a replicord server.

    The channel is taken from the last registered handler, so the context's
    prefix must be set before start().

    Example:
        >>> transport = WebSocketClientTransport("ws://127.0.0.1:8765", {"role": "admin"})
        >>> transport.register_handler("replicord_ar_.message", on_frame)
        >>> await transport.start()
    """

    def __init__(
        self,
        server_url: str,
        attributes: Mapping[str, Any] | None = None,
        heartbeat: float = 30.0,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.attributes = {k: str(v) for k, v in (attributes or {}).items()}
        self.heartbeat = heartbeat
        self._handlers: dict[str, MessageHandler] = {}
        self._channel: str | None = None
        self._session: aiohttp.ClientSession | None = None
        self._connection: _Connection | None = None
        self._reader: asyncio.Task | None = None

    async def start(self) -> None:
        if self._connection is not None:
            return
        if self._channel is None:
            raise RuntimeError("register_handler must be called before start")

        url = f"{self.server_url}/{self._channel}"
        self._session = aiohttp.ClientSession()
        try:
            socket = await self._session.ws_connect(
                url, params=self.attributes, heartbeat=self.heartbeat
            )
        except aiohttp.ClientError:
            await self._session.close()
            self._session = None
            raise

        self._connection = _Connection(self._channel, socket)
        self._connection.writer = asyncio.create_task(_drain(self._connection, "server"))
        self._reader = asyncio.create_task(self._read(self._connection))
        logger.info(f"Connected to {url}")

    async def close(self) -> None:
        connection = self._connection
        self._connection = None
        if connection is not None:
            connection.writer.cancel()
            await connection.socket.close()
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.socket.closed

    def peers(self) -> list[Peer]:
        return []

    def is_connected(self, peer: Peer) -> bool:
        return False

    def send(self, channel: str, data: bytes, peer: Peer | None = None) -> None:
        if not self.connected:
            logger.warning("Client transport not connected, dropping frame")
            return
        self._connection.outbox.put_nowait(data)

    def register_handler(self, channel: str, handler: MessageHandler) -> None:
        self._handlers[channel] = handler
        self._channel = channel

    def on_peer_connected(self, callback: PeerCallback) -> None:
        pass

    async def _read(self, connection: _Connection) -> None:
        async for message in connection.socket:
            if message.type == aiohttp.WSMsgType.BINARY:
                dispatch(self._handlers, connection.channel, None, message.data)
            elif message.type == aiohttp.WSMsgType.ERROR:
                logger.warning(f"Socket error: {connection.socket.exception()}")
        logger.info("Disconnected from server")
