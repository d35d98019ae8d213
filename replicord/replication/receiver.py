"""
Replication receiver and request matcher (client role).

Sends correlation-tagged pull requests, keeps a table of pending requests,
and applies pushes from the server: schemas register read-only model
shells, updates merge into the local buffer by identity.

Invariants:
    - A request id resolves at most once; later responses with the same id
      are dropped silently
    - An expired request fails its future with RequestTimeoutError and
      never calls its callback
    - Frames referencing unknown models are logged and ignored

How to change safely:
    - Request ids must stay unique per process; they are the only link
      between a request and its response
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..errors import (
    CallbackRequiredError,
    ProtocolError,
    ReplicordError,
    RequestTimeoutError,
)
from ..orm.model import ClientModel
from ..schema.replication import ReplicationPolicy
from ..schema.types import Schema, normalize_name
from .protocol import (
    CommitMessage,
    PullRequest,
    PullResponse,
    SchemaMessage,
    SyncMessage,
    UpdateMessage,
    decode_server_message,
)

if TYPE_CHECKING:
    from ..context import Context
    from .transport import Peer

logger = logging.getLogger(__name__)


@dataclass
class _Pending:
    future: asyncio.Future
    callback: Callable[[Any], Any] | None
    timeout: float
    timer: asyncio.TimerHandle | None = None


class PendingRequests:
    """Pending pull requests keyed by correlation id.

    Example:
        >>> pending = PendingRequests()
        >>> future = pending.add("ar_1.5-123456", callback=None, timeout=30)
        >>> pending.resolve("ar_1.5-123456", [])
        True
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Pending] = {}

    def add(
        self,
        request_id: str,
        callback: Callable[[Any], Any] | None = None,
        timeout: float = 0,
    ) -> asyncio.Future:
        """Register a request and return the future its response resolves."""
        loop = asyncio.get_running_loop()
        entry = _Pending(loop.create_future(), callback, timeout)
        if timeout > 0:
            entry.timer = loop.call_later(timeout, self.expire, request_id)
        self._entries[request_id] = entry
        return entry.future

    def resolve(self, request_id: str, result: Any) -> bool:
        """Complete a request. Returns False if the id is not pending."""
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return False
        if entry.timer is not None:
            entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(result)
        if entry.callback is not None:
            try:
                entry.callback(result)
            except Exception as e:
                logger.error(f"Pull callback for {request_id} raised: {e}", exc_info=True)
        return True

    def expire(self, request_id: str) -> None:
        entry = self._entries.pop(request_id, None)
        if entry is None:
            return
        logger.warning(
            f"Pull request {request_id} timed out",
            extra={"request_id": request_id, "timeout": entry.timeout},
        )
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(request_id, entry.timeout))

    def cancel_all(self) -> None:
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
            entry.future.cancel()
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries


class Receiver:
    """Client-side request sender and push handler."""

    def __init__(self, context: Context) -> None:
        self.context = context

    def new_request_id(self) -> str:
        return f"{self.context.prefix}{time.time()}-{random.randint(100000, 999999)}"

    def request(
        self,
        model_name: str,
        criteria: list[Any],
        callback: Callable[[Any], Any] | None = None,
    ) -> asyncio.Future:
        """Send a pull request.

        Returns:
            Future resolved with a Record (or None) for single-result verbs,
            a list of Records otherwise

        Raises:
            CallbackRequiredError: If callback is given but not callable
        """
        if callback is not None and not callable(callback):
            raise CallbackRequiredError(callback)

        request_id = self.new_request_id()
        timeout = self.context.config.replication.pull_timeout_seconds
        future = self.context.pending.add(request_id, callback, timeout)

        frame = PullRequest(model_name, request_id, list(criteria)).encode()
        self.context.transport.send(self.context.channel_name, frame)
        logger.debug(
            "Sent pull request",
            extra={"model": model_name, "request_id": request_id, "verb": criteria[0]},
        )
        return future

    def handle_message(self, peer: Peer | None, data: bytes) -> None:
        """Transport handler for frames sent by the server."""
        try:
            message = decode_server_message(data)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e}", extra={"code": e.code})
            return

        if isinstance(message, SchemaMessage):
            self.handle_schema(message)
        elif isinstance(message, UpdateMessage):
            self.handle_objects(message.model_name, [message.values])
        elif isinstance(message, SyncMessage):
            self.handle_objects(message.model_name, message.objects)
        elif isinstance(message, PullResponse):
            self.handle_response(message)
        elif isinstance(message, CommitMessage):
            logger.info("Ignoring COMMIT message (reserved)")

    def handle_schema(self, message: SchemaMessage) -> None:
        try:
            name = normalize_name(message.model_name)
            schema = Schema.from_dict(message.schema)
        except (ValueError, TypeError, AttributeError, ReplicordError) as e:
            logger.warning(f"Invalid schema for {message.model_name!r}: {e}")
            return

        existing = self.context.registry.get(name)
        if existing is not None and existing.schema.to_dict() == schema.to_dict():
            logger.debug(f"Schema for {name} unchanged")
            return

        model = ClientModel(self.context, name, schema, ReplicationPolicy())
        self.context.registry.register(model)
        logger.info(f"Received schema for {model.name}", extra={"model": model.name})

    def handle_objects(self, model_name: str, objects: list[dict[str, Any]]) -> None:
        model = self.context.registry.get(model_name)
        if model is None:
            logger.warning(f"Update for unknown model {model_name}", extra={"model": model_name})
            return
        for values in objects:
            model.merge_update(values)

    def handle_response(self, message: PullResponse) -> None:
        model = self.context.registry.get(message.model_name)
        if model is None:
            logger.warning(
                f"Response for unknown model {message.model_name}",
                extra={"model": message.model_name, "request_id": message.request_id},
            )
            return

        if message.request_id not in self.context.pending:
            return

        records = [model.materialize(values) for values in message.objects]
        result: Any = records
        if message.single_result:
            result = records[0] if records else None
        self.context.pending.resolve(message.request_id, result)
