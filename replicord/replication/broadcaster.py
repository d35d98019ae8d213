"""
Replication broadcaster (server role).

Pushes schemas and object state to peers that pass a model's condition
predicate, replays replicated models to newly connected peers, and answers
pull requests.

By default a push goes to a single representative eligible peer (the
earliest connected one). Setting replication.broadcast_to_all_eligible
sends to every eligible peer instead. Pull responses always go to the
requesting peer.

Invariants:
    - Zero eligible peers means zero frames
    - A predicate that raises counts as "not visible" for that peer
    - Invalid pull requests are logged and dropped; no response is sent
    - Incoming frames never raise into the transport

How to change safely:
    - Changing the recipient rule is observable on the wire; keep the
      single-recipient default unless every deployment opts in
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from ..errors import ProtocolError, ReplicordError
from ..orm.query import SEARCH_METHODS, SearchMethod, parse_key
from .protocol import (
    CommitMessage,
    PullRequest,
    PullResponse,
    SchemaMessage,
    SyncMessage,
    UpdateMessage,
    decode_client_message,
)

if TYPE_CHECKING:
    from ..context import Context
    from ..orm.model import Model
    from ..orm.record import Record
    from .transport import Peer

logger = logging.getLogger(__name__)


class Broadcaster:
    """Server-side push and pull handling.

    Example:
        >>> broadcaster = Broadcaster(context)
        >>> broadcaster.broadcast_object(users, user)
        1
    """

    def __init__(self, context: Context) -> None:
        self.context = context
        self._sent_count = 0
        self._request_count = 0
        self._rejected_count = 0

    def eligible_peers(self, model: Model) -> list[Peer]:
        """Connected peers passing the model's condition, in connect order."""
        transport = self.context.transport
        if transport is None or not model.replication.enabled:
            return []

        eligible = []
        for peer in transport.peers():
            try:
                visible = model.replication.is_visible_to(peer)
            except Exception as e:
                logger.error(
                    f"Condition for {model.name} raised: {e}",
                    extra={"model": model.name, "peer_id": peer.peer_id},
                )
                continue
            if visible:
                eligible.append(peer)
        return eligible

    def recipients(self, model: Model) -> list[Peer]:
        eligible = self.eligible_peers(model)
        if not eligible or self.context.config.replication.broadcast_to_all_eligible:
            return eligible
        return eligible[:1]

    def _push(self, model: Model, frame: bytes) -> int:
        peers = self.recipients(model)
        for peer in peers:
            self.context.transport.send(self.context.channel_name, frame, peer)
        self._sent_count += len(peers)
        return len(peers)

    def broadcast_schema(self, model: Model) -> int:
        """Send a model's schema. Returns the number of frames sent."""
        return self._push(model, SchemaMessage(model.name, model.schema.to_dict()).encode())

    def broadcast_object(self, model: Model, record: Record) -> int:
        """Send one object's state. Returns the number of frames sent."""
        return self._push(model, UpdateMessage(model.name, record.to_dict()).encode())

    def broadcast_sync(self, model: Model, records: Iterable[Record]) -> int:
        """Send many objects of one model in a single SYNC frame."""
        objects = [record.to_dict() for record in records]
        if not objects:
            return 0
        return self._push(model, SyncMessage(model.name, objects).encode())

    def on_peer_connected(self, peer: Peer) -> None:
        """Replay every replicated model after a peer connects."""
        for model in self.context.registry:
            if not model.replication.enabled:
                continue
            self.broadcast_schema(model)
            if model.schema.store_synchronized and model.replication.push_existing_on_connect:
                self.broadcast_sync(model, model.buffer)

    def handle_message(self, peer: Peer | None, data: bytes) -> None:
        """Transport handler for frames sent by clients."""
        try:
            message = decode_client_message(data)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e}", extra={"code": e.code})
            return

        if isinstance(message, CommitMessage):
            logger.info("Ignoring COMMIT message (reserved)")
            return

        if peer is None:
            logger.warning("Dropping pull request without a peer")
            return
        self.handle_request(peer, message)

    def handle_request(self, peer: Peer, request: PullRequest) -> None:
        """Answer a pull request if the peer may see the model."""
        self._request_count += 1
        model = self.context.registry.get(request.model_name)
        extra = {"model": request.model_name, "peer_id": peer.peer_id, "request_id": request.request_id}

        if model is None or not model.replication.enabled:
            self._reject(f"Pull request for unreplicated model {request.model_name}", extra)
            return
        try:
            visible = model.replication.is_visible_to(peer)
        except Exception as e:
            self._reject(f"Condition for {model.name} raised: {e}", extra)
            return
        if not visible:
            self._reject(f"Peer may not pull {model.name}", extra)
            return

        verb = request.criteria[0]
        method = SEARCH_METHODS.get(verb) if isinstance(verb, str) else None
        if method is None:
            self._reject(f"Invalid search method {verb!r}", extra)
            return

        key = request.criteria[1] if len(request.criteria) > 1 else None
        value = request.criteria[2] if len(request.criteria) > 2 else None
        if method.require_key:
            try:
                parse_key(model.schema, model.name, key)
            except (ReplicordError, TypeError, ValueError) as e:
                self._reject(f"Invalid search key {key!r}: {e}", extra)
                return

        if model.schema.store_synchronized:
            result = model.search(method.name, key, value)
            self._respond(peer, request, model, method, result)
            return

        if not model.replication.pull_allowed:
            self._reject(f"Pulling {model.name} from the store is not allowed", extra)
            return

        future = model.search(method.name, key, value)

        def answered(done: Any) -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                logger.error(f"Pull query for {model.name} failed: {error}", extra=extra)
                return
            if not self.context.transport.is_connected(peer):
                logger.debug("Requesting peer left before the answer", extra=extra)
                return
            self._respond(peer, request, model, method, done.result())

        future.add_done_callback(answered)

    def _respond(
        self,
        peer: Peer,
        request: PullRequest,
        model: Model,
        method: SearchMethod,
        result: Any,
    ) -> None:
        if method.single_result:
            objects = [result.to_dict()] if result is not None else []
        else:
            objects = [record.to_dict() for record in result]

        frame = PullResponse(request.request_id, model.name, method.single_result, objects).encode()
        self.context.transport.send(self.context.channel_name, frame, peer)
        self._sent_count += 1

    def _reject(self, reason: str, extra: dict[str, Any]) -> None:
        self._rejected_count += 1
        logger.warning(reason, extra=extra)

    @property
    def stats(self) -> dict[str, Any]:
        """Get broadcaster statistics."""
        return {
            "sent_count": self._sent_count,
            "request_count": self._request_count,
            "rejected_count": self._rejected_count,
        }
