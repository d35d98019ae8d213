"""
Replication policy builder.

A ReplicationPolicy decides whether a model's objects travel between the
server and its peers, when they are pushed, whether peers may pull them on
demand, and which peers may see them at all.

Invariants:
    - A policy that is enabled always has a condition predicate by the time
      setup_model returns (validate() enforces this)
    - Setters validate their argument and return the same builder
    - The predicate only ever sees a Peer, never a raw connection

How to change safely:
    - New flags need a default that keeps existing push behavior unchanged
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ..errors import CallbackRequiredError, MissingConditionError


class ReplicationPolicy:
    """Fluent declaration of a model's replication rules.

    Attributes:
        enabled: Whether the model is replicated at all
        push_on_create: Push objects to eligible peers when they are saved
        push_existing_on_connect: Push every buffered object when a peer
            connects and after the initial store load
        pull_allowed: Peers may trigger store queries for unsynchronized models
        predicate: Visibility predicate over a peer

    Example:
        >>> policy = ReplicationPolicy().enable().condition(lambda peer: True)
        >>> policy.validate("user")
    """

    def __init__(self) -> None:
        self.enabled = False
        self.push_on_create = True
        self.push_existing_on_connect = True
        self.pull_allowed = False
        self.predicate: Callable[[Any], Any] | None = None

    def enable(self, value: bool = True) -> ReplicationPolicy:
        _require_bool(value, "enable")
        self.enabled = value
        return self

    def sync(self, value: bool = True) -> ReplicationPolicy:
        """Push objects to eligible peers when they are saved."""
        _require_bool(value, "sync")
        self.push_on_create = value
        return self

    def sync_existing(self, value: bool = True) -> ReplicationPolicy:
        """Push all buffered objects to a peer when it connects.

        Only worth enabling for small models; every connect resends the
        whole buffer.
        """
        _require_bool(value, "sync_existing")
        self.push_existing_on_connect = value
        return self

    def allow_pull(self, value: bool = True) -> ReplicationPolicy:
        """Let peers trigger a store query when an object is not in memory."""
        _require_bool(value, "allow_pull")
        self.pull_allowed = value
        return self

    def condition(self, predicate: Callable[[Any], Any]) -> ReplicationPolicy:
        """Set the predicate deciding which peers may see this model.

        Raises:
            CallbackRequiredError: If predicate is not callable
        """
        if not callable(predicate):
            raise CallbackRequiredError(predicate, "condition predicate")
        self.predicate = predicate
        return self

    def validate(self, model_name: str) -> None:
        """Check the policy is consistent.

        Raises:
            MissingConditionError: If enabled without a predicate
        """
        if self.enabled and self.predicate is None:
            raise MissingConditionError(model_name)

    def is_visible_to(self, peer: Any) -> bool:
        """Whether peer passes the visibility predicate."""
        if not self.enabled or self.predicate is None:
            return False
        return bool(self.predicate(peer))

    def __repr__(self) -> str:
        return (
            f"ReplicationPolicy(enabled={self.enabled}, sync={self.push_on_create}, "
            f"sync_existing={self.push_existing_on_connect}, allow_pull={self.pull_allowed})"
        )


def _require_bool(value: Any, setting: str) -> None:
    if not isinstance(value, bool):
        raise TypeError(f"Expected bool for '{setting}', got {type(value).__name__}")
