"""
Unit tests for the in-memory storage adapter.
"""

import pytest

from replicord.errors import StorageError, StoreNotConnectedError
from replicord.store.base import QueryKind, canonical_operator


async def create_users(store):
    await (
        store.create("t_users")
        .column("id", "INTEGER", auto_increment=True)
        .primary_key("id")
        .column("name", "VARCHAR(255)")
        .column("boxes", "INTEGER")
        .run()
    )


class TestInMemoryStore:
    """Tests for InMemoryStore."""

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, store):
        assert not store.is_connected
        await store.connect()
        assert store.is_connected
        await store.close()
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_requires_connection(self, store):
        with pytest.raises(StoreNotConnectedError):
            await store.select("t_users").run()

    @pytest.mark.asyncio
    async def test_insert_assigns_identity(self, store):
        await store.connect()
        await create_users(store)

        first = await store.insert("t_users").set_column("name", "a").run()
        second = await store.insert("t_users").set_column("name", "b").run()

        assert first.last_insert_id == 1
        assert second.last_insert_id == 2
        assert store.rows("t_users")[1] == {"id": 2, "name": "b", "boxes": None}

    @pytest.mark.asyncio
    async def test_duplicate_primary_key(self, store):
        await store.connect()
        await create_users(store)
        await store.insert("t_users").set_column("id", 1).run()

        with pytest.raises(StorageError, match="UNIQUE"):
            await store.insert("t_users").set_column("id", 1).run()

    @pytest.mark.asyncio
    async def test_select_filters_orders_limits(self, store):
        await store.connect()
        await create_users(store)
        for name, boxes in (("c", 30), ("a", 10), ("b", 20)):
            await store.insert("t_users").set_column("name", name).set_column("boxes", boxes).run()

        result = await store.select("t_users").where("boxes", 15, ">").run()
        assert [row["name"] for row in result.rows] == ["c", "b"]

        result = await store.select("t_users").order_by_asc("boxes").limit(2).run()
        assert [row["name"] for row in result.rows] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_null_conditions(self, store):
        await store.connect()
        await create_users(store)
        await store.insert("t_users").set_column("name", "a").run()
        await store.insert("t_users").set_column("name", "b").set_column("boxes", 1).run()

        result = await store.select("t_users").where("boxes", None).run()
        assert [row["name"] for row in result.rows] == ["a"]
        result = await store.select("t_users").where("boxes", 0, ">=").run()
        assert [row["name"] for row in result.rows] == ["b"]

    @pytest.mark.asyncio
    async def test_update_and_delete(self, store):
        await store.connect()
        await create_users(store)
        await store.insert("t_users").set_column("name", "a").run()

        result = await store.update("t_users").where("id", 1).set_column("boxes", 5).run()
        assert result.rowcount == 1
        assert store.rows("t_users")[0]["boxes"] == 5

        result = await store.delete("t_users").where("id", 1).run()
        assert result.rowcount == 1
        assert store.rows("t_users") == []

    @pytest.mark.asyncio
    async def test_unknown_table_and_column(self, store):
        await store.connect()
        with pytest.raises(StorageError, match="no such table"):
            await store.select("missing").run()

        await create_users(store)
        with pytest.raises(StorageError, match="no column"):
            await store.insert("t_users").set_column("ghost", 1).run()

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, store):
        await store.connect()
        await create_users(store)
        await store.insert("t_users").set_column("name", "a").run()
        await create_users(store)
        assert len(store.rows("t_users")) == 1

    @pytest.mark.asyncio
    async def test_execute_callbacks(self, store, settle):
        await store.connect()
        await create_users(store)
        completed, failed = [], []

        store.insert("t_users").set_column("name", "a").on_complete(completed.append).execute()
        store.select("missing").on_error(failed.append).execute()
        await settle()

        assert completed[0].last_insert_id == 1
        assert isinstance(failed[0], StorageError)

    @pytest.mark.asyncio
    async def test_close_waits_for_dispatched_queries(self, store):
        await store.connect()
        await create_users(store)

        def chained(result):
            store.insert("t_users").set_column("name", "b").execute()

        store.insert("t_users").set_column("name", "a").on_complete(chained).execute()
        assert len(store.pending_tasks) == 1

        await store.close()

        assert [row["name"] for row in store.rows("t_users")] == ["a", "b"]
        assert store.pending_tasks == set()

    @pytest.mark.asyncio
    async def test_fail_next(self, store):
        await store.connect()
        await create_users(store)
        store.fail_next()

        with pytest.raises(StorageError, match="injected"):
            await store.select("t_users").run()
        await store.select("t_users").run()

    @pytest.mark.asyncio
    async def test_clear(self, store):
        await store.connect()
        await create_users(store)
        store.clear()
        assert store.tables == {}
        assert store.executed == []


class TestQueryBuilder:
    """Tests for the shared Query builder."""

    def test_operator_aliases(self):
        assert canonical_operator("==") == "="
        assert canonical_operator("<>") == "!="
        with pytest.raises(ValueError):
            canonical_operator("LIKE")

    def test_builder_state(self, store):
        query = store.update("t").where("id", 3).set_column("name", "x")
        assert query.kind == QueryKind.UPDATE
        assert query.values == {"name": "x"}
        assert query.conditions[0].column == "id"

    def test_negative_limit(self, store):
        with pytest.raises(ValueError):
            store.select("t").limit(-1)
