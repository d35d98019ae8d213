"""
Shared fixtures for replicord tests.
"""

import asyncio

import pytest

from replicord.config import ReplicordConfig, ReplicationConfig, Role
from replicord.context import Context
from replicord.store.memory import InMemoryStore


@pytest.fixture
def settle():
    """Let queued callbacks and query tasks run to completion."""

    async def _settle(rounds: int = 25) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _settle


@pytest.fixture
def store():
    """Create a fresh (not yet connected) in-memory store."""
    return InMemoryStore()


@pytest.fixture
def server_config():
    return ReplicordConfig(role=Role.SERVER, prefix="test")


@pytest.fixture
def client_config():
    return ReplicordConfig(
        role=Role.CLIENT,
        prefix="test",
        replication=ReplicationConfig(pull_timeout_seconds=2.0),
    )


@pytest.fixture
def server(server_config, store):
    """Server context backed by the in-memory store, without a transport."""
    return Context(server_config, store=store)
