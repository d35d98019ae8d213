"""
Unit tests for the write queue.

Tests cover:
- One dispatch per tick, FIFO order
- Disconnected ticks
- Insert, update and delete compilation
- Identity adoption for unsynchronized models
- Failure accounting
"""

import pytest

from replicord.errors import StorageError
from replicord.write_queue import WriteKind

from ..app_models import configure_user


async def drain(context, settle):
    """Tick until the queue is empty, letting each write complete."""
    ticks = 0
    while context.tick():
        ticks += 1
        await settle()
    return ticks


class TestWriteQueueTicks:
    """Tests for tick-driven draining."""

    @pytest.mark.asyncio
    async def test_k_entries_take_k_ticks(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        for i in range(4):
            users.new(name=str(i)).save()
        await store.connect()

        assert len(server.write_queue) == 5
        for expected_depth in (4, 3, 2, 1, 0):
            assert server.tick() is True
            assert len(server.write_queue) == expected_depth
            await settle()

        assert server.tick() is False
        assert server.write_queue.stats["dispatched_count"] == 5

    @pytest.mark.asyncio
    async def test_disconnected_tick_consumes_nothing(self, server, store, settle):
        server.setup_model("User", configure_user)
        assert store.is_connected is False

        for _ in range(3):
            assert server.tick() is False
        assert len(server.write_queue) == 1

        await store.connect()
        assert server.tick() is True
        assert len(server.write_queue) == 0
        await settle()
        assert "test_users" in store.tables

    @pytest.mark.asyncio
    async def test_fifo_order(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        users.new(name="a").save()
        users.new(name="b").save()
        await store.connect()

        await drain(server, settle)

        kinds = [query.kind.value for query in store.executed]
        # the create is followed by the initial full load
        assert kinds[:2] == ["create", "select"]
        assert [row["name"] for row in store.rows("test_users")] == ["a", "b"]

    def test_no_store(self, server_config):
        from replicord.context import Context

        context = Context(server_config)
        context.setup_model("User", configure_user)
        assert context.tick() is False


class TestWriteQueueStatements:
    """Tests for the statements the queue produces."""

    @pytest.mark.asyncio
    async def test_schema_create_columns(self, server, store, settle):
        server.setup_model("User", configure_user)
        await store.connect()
        await drain(server, settle)

        table = store.tables["test_users"]
        assert table.columns == ["id", "name", "steam_id", "boxes", "admin"]
        assert table.auto_column == "id"
        assert table.primary_key == "id"

    @pytest.mark.asyncio
    async def test_insert_then_update(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        await store.connect()
        await drain(server, settle)

        user = users.new(name="`impulse", boxes=9001)
        user.save()
        await drain(server, settle)
        assert user.persisted is True
        assert store.rows("test_users") == [
            {"id": 1, "name": "`impulse", "steam_id": None, "boxes": 9001, "admin": None}
        ]

        user.boxes = 9002
        user.save()
        update = server.write_queue.peek()
        assert update.kind == WriteKind.OBJECT_UPSERT
        await drain(server, settle)

        assert len(store.rows("test_users")) == 1
        assert store.rows("test_users")[0]["boxes"] == 9002
        assert store.executed[-1].kind.value == "update"

    @pytest.mark.asyncio
    async def test_repeated_save_still_enqueues(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        user = users.new(name="a")
        user.save()
        user.save()
        assert len(server.write_queue) == 3

    @pytest.mark.asyncio
    async def test_destroy_deletes_row(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        await store.connect()
        keep, gone = users.new(name="keep"), users.new(name="gone")
        keep.save()
        gone.save()
        await drain(server, settle)

        gone.destroy()
        assert users.buffer == [keep]
        await drain(server, settle)

        assert [row["name"] for row in store.rows("test_users")] == ["keep"]

    @pytest.mark.asyncio
    async def test_unsynchronized_insert_adopts_store_identity(self, server, store, settle):
        bans = server.setup_model("Ban", lambda s, r: s.string("reason").sync(False))
        await store.connect()
        await drain(server, settle)

        table = store.tables["test_bans"]
        table.next_id = 40

        ban = bans.new(reason="spam")
        assert ban.id == 1
        ban.save()
        await drain(server, settle)

        assert ban.persisted is True
        assert ban.id == 40
        assert store.rows("test_bans")[0]["id"] == 40

    @pytest.mark.asyncio
    async def test_update_without_identity_is_dropped(self, server, store, settle):
        logs = server.setup_model("Log", lambda s, r: s.identity(False).string("line"))
        await store.connect()
        await drain(server, settle)

        line = logs.new(line="hello")
        line.save()
        await drain(server, settle)
        assert line.persisted

        line.save()
        await drain(server, settle)
        assert server.write_queue.stats["dropped_count"] == 1
        assert len(store.rows("test_logs")) == 1

    @pytest.mark.asyncio
    async def test_delete_without_identity_matches_values(self, server, store, settle):
        logs = server.setup_model("Log", lambda s, r: s.identity(False).string("line"))
        await store.connect()
        first, second = logs.new(line="one"), logs.new(line="two")
        first.save()
        second.save()
        await drain(server, settle)

        second.destroy()
        await drain(server, settle)
        assert store.rows("test_logs") == [{"line": "one"}]

    @pytest.mark.asyncio
    async def test_failed_write_is_not_retried(self, server, store, settle):
        users = server.setup_model("User", configure_user)
        await store.connect()
        await drain(server, settle)

        user = users.new(name="a")
        user.save()
        store.fail_next(StorageError("disk full"))
        await drain(server, settle)

        assert user.persisted is False
        assert server.write_queue.stats["failed_count"] == 1
        assert len(server.write_queue) == 0
        assert store.rows("test_users") == []
