"""
Unit tests for ReplicationPolicy.
"""

import pytest

from replicord.errors import CallbackRequiredError, MissingConditionError
from replicord.replication.transport import Peer
from replicord.schema.replication import ReplicationPolicy


class TestReplicationPolicy:
    """Tests for the replication policy builder."""

    def test_defaults(self):
        policy = ReplicationPolicy()
        assert policy.enabled is False
        assert policy.push_on_create is True
        assert policy.push_existing_on_connect is True
        assert policy.pull_allowed is False
        assert policy.predicate is None

    def test_chaining(self):
        policy = ReplicationPolicy()
        result = policy.enable().sync(False).sync_existing(False).allow_pull()
        assert result is policy
        assert policy.enabled
        assert not policy.push_on_create
        assert not policy.push_existing_on_connect
        assert policy.pull_allowed

    @pytest.mark.parametrize("setter", ["enable", "sync", "sync_existing", "allow_pull"])
    def test_setters_require_bool(self, setter):
        with pytest.raises(TypeError):
            getattr(ReplicationPolicy(), setter)("true")

    def test_condition_requires_callable(self):
        with pytest.raises(CallbackRequiredError) as exc_info:
            ReplicationPolicy().condition(True)
        assert isinstance(exc_info.value, TypeError)

    def test_validate_enabled_without_condition(self):
        with pytest.raises(MissingConditionError) as exc_info:
            ReplicationPolicy().enable().validate("user")
        assert exc_info.value.model_name == "user"

    def test_validate_disabled_without_condition(self):
        ReplicationPolicy().validate("user")

    def test_is_visible_to(self):
        policy = ReplicationPolicy().enable().condition(lambda peer: peer.get("admin") == "1")
        assert policy.is_visible_to(Peer("a", {"admin": "1"}))
        assert not policy.is_visible_to(Peer("b", {"admin": "0"}))
        assert not policy.is_visible_to(Peer("c"))

    def test_disabled_policy_hides_everything(self):
        policy = ReplicationPolicy().condition(lambda peer: True)
        assert not policy.is_visible_to(Peer("a"))

    def test_truthy_predicate_result(self):
        policy = ReplicationPolicy().enable().condition(lambda peer: "yes")
        assert policy.is_visible_to(Peer("a")) is True
