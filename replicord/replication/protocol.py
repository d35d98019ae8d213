"""
Wire codec for replication messages.

Every frame starts with a 1-byte message type followed by type-specific
fields. All integers are big-endian.

Field encodings:
    string       : uint32 length + UTF-8 bytes
    uint8/16/32  : fixed width
    bool         : 1 byte (0 or 1)
    table block  : uint32 length + gzip(compact JSON)

Frame layouts:
    SCHEMA   server->client : model name, table {"fields", "identity", "synchronized"}
    UPDATE   server->client : model name, table {field: value}
    SYNC     server->client : model name, table [{field: value}, ...]
    REQUEST  client->server : model name, request id, table [verb, key?, value?]
    REQUEST  server->client : request id, model name, bool single, table [{...}, ...]
    COMMIT                  : reserved, payload is opaque

Invariants:
    - REQUEST has a different layout in each direction; decode with the
      function for the receiving side
    - Decoding never returns partial messages; truncation is a ProtocolError

How to change safely:
    - Never renumber MessageType values, peers on older builds rely on them
    - New message types must be ignored (logged) by older receivers
"""

from __future__ import annotations

import gzip
import json
import struct
import zlib
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from ..errors import ProtocolError

_UINT_FORMATS = {8: ">B", 16: ">H", 32: ">I"}
_LENGTH = struct.Struct(">I")


class MessageType(IntEnum):
    """Replication message type tags."""

    COMMIT = 1
    SCHEMA = 2
    REQUEST = 3
    UPDATE = 4
    SYNC = 5


def pack_table(data: Any) -> bytes:
    """Serialize a table to compact JSON and compress it.

    Raises:
        ProtocolError: If data is not JSON-serializable
    """
    try:
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Table is not serializable: {e}")
    return gzip.compress(text.encode("utf-8"))


def unpack_table(blob: bytes) -> Any:
    """Decompress and parse a table produced by pack_table.

    Raises:
        ProtocolError: If blob is not valid compressed JSON
    """
    try:
        return json.loads(gzip.decompress(blob).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid table block: {e}")


class MessageWriter:
    """Builds one frame field by field.

    Example:
        >>> writer = MessageWriter(MessageType.UPDATE)
        >>> writer.write_string("user").write_table_block({"id": 1})
        >>> frame = writer.to_bytes()
    """

    def __init__(self, message_type: MessageType) -> None:
        self.message_type = message_type
        self._parts: list[bytes] = [struct.pack(">B", int(message_type))]

    def write_string(self, value: str) -> MessageWriter:
        if not isinstance(value, str):
            raise ProtocolError(f"Expected str, got {type(value).__name__}", self.message_type)
        encoded = value.encode("utf-8")
        self._parts.append(_LENGTH.pack(len(encoded)))
        self._parts.append(encoded)
        return self

    def write_uint(self, value: int, bits: int = 32) -> MessageWriter:
        fmt = _UINT_FORMATS.get(bits)
        if fmt is None:
            raise ProtocolError(f"Unsupported uint width: {bits}", self.message_type)
        try:
            self._parts.append(struct.pack(fmt, value))
        except struct.error as e:
            raise ProtocolError(f"Cannot encode {value} as uint{bits}: {e}", self.message_type)
        return self

    def write_bool(self, value: bool) -> MessageWriter:
        self._parts.append(b"\x01" if value else b"\x00")
        return self

    def write_table_block(self, data: Any) -> MessageWriter:
        blob = pack_table(data)
        self._parts.append(_LENGTH.pack(len(blob)))
        self._parts.append(blob)
        return self

    def to_bytes(self) -> bytes:
        return b"".join(self._parts)


class MessageReader:
    """Reads fields of one frame in order.

    Raises ProtocolError on any truncated or malformed field.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._offset = 0
        raw_type = self.read_uint(8)
        try:
            self.message_type = MessageType(raw_type)
        except ValueError:
            raise ProtocolError(f"Unknown message type: {raw_type}", raw_type)

    def _take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ProtocolError(
                f"Truncated frame: need {size} bytes at offset {self._offset}",
                getattr(self, "message_type", None),
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def read_string(self) -> str:
        (length,) = _LENGTH.unpack(self._take(4))
        try:
            return self._take(length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Invalid UTF-8 string: {e}", self.message_type)

    def read_uint(self, bits: int = 32) -> int:
        fmt = _UINT_FORMATS.get(bits)
        if fmt is None:
            raise ProtocolError(f"Unsupported uint width: {bits}")
        (value,) = struct.unpack(fmt, self._take(bits // 8))
        return value

    def read_bool(self) -> bool:
        return self._take(1) != b"\x00"

    def read_table_block(self) -> Any:
        (length,) = _LENGTH.unpack(self._take(4))
        return unpack_table(self._take(length))

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset


@dataclass
class SchemaMessage:
    """Schema push for one model."""

    model_name: str
    schema: dict[str, Any]

    def encode(self) -> bytes:
        return (
            MessageWriter(MessageType.SCHEMA)
            .write_string(self.model_name)
            .write_table_block(self.schema)
            .to_bytes()
        )


@dataclass
class UpdateMessage:
    """State of one object."""

    model_name: str
    values: dict[str, Any]

    def encode(self) -> bytes:
        return (
            MessageWriter(MessageType.UPDATE)
            .write_string(self.model_name)
            .write_table_block(self.values)
            .to_bytes()
        )


@dataclass
class SyncMessage:
    """Batched state of many objects of one model."""

    model_name: str
    objects: list[dict[str, Any]] = field(default_factory=list)

    def encode(self) -> bytes:
        return (
            MessageWriter(MessageType.SYNC)
            .write_string(self.model_name)
            .write_table_block(self.objects)
            .to_bytes()
        )


@dataclass
class PullRequest:
    """Client fetch request tagged with a correlation id."""

    model_name: str
    request_id: str
    criteria: list[Any]

    def encode(self) -> bytes:
        return (
            MessageWriter(MessageType.REQUEST)
            .write_string(self.model_name)
            .write_string(self.request_id)
            .write_table_block(self.criteria)
            .to_bytes()
        )


@dataclass
class PullResponse:
    """Server answer to a PullRequest."""

    request_id: str
    model_name: str
    single_result: bool
    objects: list[dict[str, Any]] = field(default_factory=list)

    def encode(self) -> bytes:
        return (
            MessageWriter(MessageType.REQUEST)
            .write_string(self.request_id)
            .write_string(self.model_name)
            .write_bool(self.single_result)
            .write_table_block(self.objects)
            .to_bytes()
        )


@dataclass
class CommitMessage:
    """Reserved message type; carried opaquely."""

    payload: bytes = b""

    def encode(self) -> bytes:
        return bytes([MessageType.COMMIT]) + self.payload


ServerMessage = SchemaMessage | UpdateMessage | SyncMessage | PullResponse | CommitMessage
ClientMessage = PullRequest | CommitMessage


def decode_server_message(data: bytes) -> ServerMessage:
    """Decode a frame sent by a server (received on a client).

    Raises:
        ProtocolError: If the frame is malformed
    """
    reader = MessageReader(data)
    kind = reader.message_type

    if kind == MessageType.SCHEMA:
        name = reader.read_string()
        schema = reader.read_table_block()
        if not isinstance(schema, dict):
            raise ProtocolError("SCHEMA table must be a mapping", kind)
        return SchemaMessage(name, schema)

    if kind == MessageType.UPDATE:
        name = reader.read_string()
        values = reader.read_table_block()
        if not isinstance(values, dict):
            raise ProtocolError("UPDATE table must be a mapping", kind)
        return UpdateMessage(name, values)

    if kind == MessageType.SYNC:
        name = reader.read_string()
        return SyncMessage(name, _object_list(reader.read_table_block(), kind))

    if kind == MessageType.REQUEST:
        request_id = reader.read_string()
        name = reader.read_string()
        single = reader.read_bool()
        return PullResponse(request_id, name, single, _object_list(reader.read_table_block(), kind))

    return CommitMessage(data[1:])


def decode_client_message(data: bytes) -> ClientMessage:
    """Decode a frame sent by a client (received on the server).

    Raises:
        ProtocolError: If the frame is malformed or not a client message
    """
    reader = MessageReader(data)
    kind = reader.message_type

    if kind == MessageType.REQUEST:
        name = reader.read_string()
        request_id = reader.read_string()
        criteria = reader.read_table_block()
        if not isinstance(criteria, list) or not criteria:
            raise ProtocolError("REQUEST criteria must be a non-empty list", kind)
        return PullRequest(name, request_id, criteria)

    if kind == MessageType.COMMIT:
        return CommitMessage(data[1:])

    raise ProtocolError(f"{kind.name} is not a client message", kind)


def _object_list(table: Any, kind: MessageType) -> list[dict[str, Any]]:
    if table is None:
        return []
    if not isinstance(table, list) or not all(isinstance(item, dict) for item in table):
        raise ProtocolError(f"{kind.name} table must be a list of mappings", kind)
    return table
