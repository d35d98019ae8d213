"""
Unit tests for configuration loading.
"""

import logging

import pytest

from replicord.config import (
    ReplicordConfig,
    ReplicationConfig,
    Role,
    StoreBackend,
    StoreConfig,
    parse_attributes,
)

ENV_VARS = (
    "REPLICORD_ROLE",
    "REPLICORD_PREFIX",
    "REPLICORD_TICK_INTERVAL",
    "REPLICORD_MODELS",
    "REPLICORD_STORE",
    "REPLICORD_SQLITE_PATH",
    "REPLICORD_SQLITE_BUSY_TIMEOUT_MS",
    "REPLICORD_HOST",
    "REPLICORD_PORT",
    "REPLICORD_SERVER_URL",
    "REPLICORD_CLIENT_ATTRIBUTES",
    "REPLICORD_PULL_TIMEOUT",
    "REPLICORD_BROADCAST_ALL",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


class TestFromEnv:
    """Tests for ReplicordConfig.from_env."""

    def test_defaults(self, clean_env):
        config = ReplicordConfig.from_env()
        assert config.role == Role.SERVER
        assert config.prefix == "ar"
        assert config.tick_interval == 1.0
        assert config.models_module is None
        assert config.store.backend == StoreBackend.SQLITE
        assert config.transport.port == 8765
        assert config.transport.client_attributes == ()
        assert config.replication.pull_timeout_seconds == 30.0
        assert config.replication.broadcast_to_all_eligible is False
        assert config.observability.log_format == "json"

    def test_overrides(self, clean_env, tmp_path):
        clean_env.setenv("REPLICORD_ROLE", "Client")
        clean_env.setenv("REPLICORD_PREFIX", "game")
        clean_env.setenv("REPLICORD_MODELS", "tests.app_models")
        clean_env.setenv("REPLICORD_SERVER_URL", "ws://example:9000")
        clean_env.setenv("REPLICORD_CLIENT_ATTRIBUTES", "admin=true, team=red")
        clean_env.setenv("REPLICORD_PULL_TIMEOUT", "0")
        clean_env.setenv("LOG_FORMAT", "text")

        config = ReplicordConfig.from_env()
        assert config.role == Role.CLIENT
        assert config.prefix == "game"
        assert config.models_module == "tests.app_models"
        assert config.transport.server_url == "ws://example:9000"
        assert config.transport.client_attributes == (("admin", "true"), ("team", "red"))
        assert config.replication.pull_timeout_seconds == 0.0

    def test_memory_store(self, clean_env):
        clean_env.setenv("REPLICORD_STORE", "memory")
        assert ReplicordConfig.from_env().store.backend == StoreBackend.MEMORY

    @pytest.mark.parametrize(
        "name,value",
        [
            ("REPLICORD_ROLE", "peer"),
            ("REPLICORD_STORE", "postgres"),
            ("REPLICORD_TICK_INTERVAL", "0"),
            ("REPLICORD_PULL_TIMEOUT", "-1"),
            ("REPLICORD_PREFIX", " "),
            ("LOG_FORMAT", "xml"),
            ("REPLICORD_CLIENT_ATTRIBUTES", "admin"),
        ],
    )
    def test_invalid(self, clean_env, name, value):
        clean_env.setenv(name, value)
        with pytest.raises(ValueError):
            ReplicordConfig.from_env()


class TestValidate:
    """Tests for ReplicordConfig.validate."""

    def test_missing_sqlite_directory(self, tmp_path):
        config = ReplicordConfig(
            store=StoreConfig(sqlite_path=str(tmp_path / "missing" / "db.sqlite"))
        )
        with pytest.raises(ValueError, match="does not exist"):
            config.validate()

    def test_memory_database_path(self):
        ReplicordConfig(store=StoreConfig(sqlite_path=":memory:")).validate()

    def test_client_ignores_store(self, tmp_path):
        config = ReplicordConfig(
            role=Role.CLIENT,
            store=StoreConfig(sqlite_path=str(tmp_path / "missing" / "db.sqlite")),
        )
        config.validate()

    def test_broadcast_all_on_client_warns(self, caplog):
        config = ReplicordConfig(
            role=Role.CLIENT,
            replication=ReplicationConfig(broadcast_to_all_eligible=True),
        )
        with caplog.at_level(logging.WARNING, logger="replicord.config"):
            config.validate()
        assert "no effect" in caplog.text


class TestParseAttributes:
    """Tests for parse_attributes."""

    def test_empty(self):
        assert parse_attributes("") == ()
        assert parse_attributes(" , ") == ()

    def test_pairs(self):
        assert parse_attributes("a=1,b=x=y") == (("a", "1"), ("b", "x=y"))

    def test_missing_key(self):
        with pytest.raises(ValueError):
            parse_attributes("=1")


class TestRole:
    def test_from_str(self):
        assert Role.from_str("SERVER") == Role.SERVER
        with pytest.raises(ValueError):
            Role.from_str("both")
