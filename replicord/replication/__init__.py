"""
Replication protocol between a server node and its peers.

This module provides:
- The wire codec (MessageType, MessageWriter, MessageReader, messages)
- The Transport protocol with in-process and websocket implementations
- Broadcaster (server role) and Receiver (client role)

Invariants:
    - Only models passing their condition predicate are sent to a peer
    - Every pull request carries a correlation id echoed by its response
    - Malformed frames are logged and dropped, never raised to the transport

How to change safely:
    - New transports must implement the Transport protocol
    - Test protocol changes with both LocalNetwork and websockets
"""

from .broadcaster import Broadcaster
from .protocol import (
    CommitMessage,
    MessageReader,
    MessageType,
    MessageWriter,
    PullRequest,
    PullResponse,
    SchemaMessage,
    SyncMessage,
    UpdateMessage,
    decode_client_message,
    decode_server_message,
    pack_table,
    unpack_table,
)
from .receiver import PendingRequests, Receiver
from .transport import LocalNetwork, Peer, Transport
from .websocket import WebSocketClientTransport, WebSocketServerTransport

__all__ = [
    # Roles
    "Broadcaster",
    "PendingRequests",
    "Receiver",
    # Transport
    "LocalNetwork",
    "Peer",
    "Transport",
    "WebSocketClientTransport",
    "WebSocketServerTransport",
    # Wire
    "CommitMessage",
    "MessageReader",
    "MessageType",
    "MessageWriter",
    "PullRequest",
    "PullResponse",
    "SchemaMessage",
    "SyncMessage",
    "UpdateMessage",
    "decode_client_message",
    "decode_server_message",
    "pack_table",
    "unpack_table",
]
