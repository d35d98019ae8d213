"""
Unit tests for the SQLite storage adapter.
"""

import os
import tempfile

import pytest

from replicord.errors import StorageError, StoreNotConnectedError
from replicord.store.sqlite import SqliteStore, quote_identifier


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sqlite_store(data_dir):
    return SqliteStore(os.path.join(data_dir, "nested", "replicord.db"))


async def create_users(store):
    await (
        store.create("t_users")
        .column("id", "INTEGER", auto_increment=True)
        .primary_key("id")
        .column("name", "VARCHAR(255)")
        .column("boxes", "INTEGER")
        .column("admin", "TINYINT(1)")
        .run()
    )


class TestCompile:
    """Tests for SQL generation."""

    def test_quote_identifier(self):
        assert quote_identifier("ar_users") == '"ar_users"'
        with pytest.raises(StorageError):
            quote_identifier("users; DROP TABLE x")

    def test_create(self, sqlite_store):
        query = (
            sqlite_store.create("t_users")
            .column("id", "INTEGER", auto_increment=True)
            .primary_key("id")
            .column("name", "VARCHAR(255)")
        )
        sql, params = sqlite_store.compile(query)
        assert sql == (
            'CREATE TABLE IF NOT EXISTS "t_users" '
            '("id" INTEGER PRIMARY KEY AUTOINCREMENT, "name" VARCHAR(255))'
        )
        assert params == []

    def test_create_rejects_bad_type(self, sqlite_store):
        query = sqlite_store.create("t").column("x", "INT; DROP")
        with pytest.raises(StorageError):
            sqlite_store.compile(query)

    def test_select(self, sqlite_store):
        query = sqlite_store.select("t_users").where("boxes", 5, ">").order_by_asc("id").limit(1)
        sql, params = sqlite_store.compile(query)
        assert sql == 'SELECT * FROM "t_users" WHERE "boxes" > ? ORDER BY "id" ASC LIMIT 1'
        assert params == [5]

    def test_null_condition(self, sqlite_store):
        sql, params = sqlite_store.compile(sqlite_store.delete("t").where("x", None, "!="))
        assert sql == 'DELETE FROM "t" WHERE "x" IS NOT NULL'
        assert params == []

    def test_update_without_values_is_noop(self, sqlite_store):
        assert sqlite_store.compile(sqlite_store.update("t").where("id", 1)) == (None, [])

    def test_insert_default_values(self, sqlite_store):
        sql, _ = sqlite_store.compile(sqlite_store.insert("t"))
        assert sql == 'INSERT INTO "t" DEFAULT VALUES'


class TestSqliteStore:
    """Tests against a real SQLite file."""

    @pytest.mark.asyncio
    async def test_requires_connection(self, sqlite_store):
        with pytest.raises(StoreNotConnectedError):
            await sqlite_store.select("t_users").run()

    @pytest.mark.asyncio
    async def test_connect_creates_directory(self, sqlite_store, data_dir):
        await sqlite_store.connect()
        try:
            assert sqlite_store.is_connected
            assert os.path.isdir(os.path.join(data_dir, "nested"))
        finally:
            await sqlite_store.close()
        assert not sqlite_store.is_connected

    @pytest.mark.asyncio
    async def test_round_trip(self, sqlite_store):
        await sqlite_store.connect()
        try:
            await create_users(sqlite_store)
            result = await (
                sqlite_store.insert("t_users")
                .set_column("name", "a")
                .set_column("boxes", 150)
                .set_column("admin", True)
                .run()
            )
            assert result.last_insert_id == 1
            await sqlite_store.insert("t_users").set_column("name", "b").set_column("boxes", 5).run()

            rows = (await sqlite_store.select("t_users").where("boxes", 100, ">").run()).rows
            assert rows == [{"id": 1, "name": "a", "boxes": 150, "admin": 1}]

            updated = await sqlite_store.update("t_users").where("id", 2).set_column("boxes", 6).run()
            assert updated.rowcount == 1

            await sqlite_store.delete("t_users").where("id", 1).run()
            rows = (await sqlite_store.select("t_users").run()).rows
            assert rows == [{"id": 2, "name": "b", "boxes": 6, "admin": None}]
        finally:
            await sqlite_store.close()

    @pytest.mark.asyncio
    async def test_close_keeps_dispatched_writes(self, sqlite_store):
        await sqlite_store.connect()
        await create_users(sqlite_store)
        sqlite_store.insert("t_users").set_column("name", "late").execute()
        await sqlite_store.close()

        await sqlite_store.connect()
        try:
            rows = (await sqlite_store.select("t_users").run()).rows
            assert [row["name"] for row in rows] == ["late"]
        finally:
            await sqlite_store.close()

    @pytest.mark.asyncio
    async def test_identity_not_reused(self, sqlite_store):
        """AUTOINCREMENT never hands out a deleted id again."""
        await sqlite_store.connect()
        try:
            await create_users(sqlite_store)
            await sqlite_store.insert("t_users").set_column("name", "a").run()
            await sqlite_store.delete("t_users").where("id", 1).run()
            result = await sqlite_store.insert("t_users").set_column("name", "b").run()
            assert result.last_insert_id == 2
        finally:
            await sqlite_store.close()

    @pytest.mark.asyncio
    async def test_statement_errors_are_wrapped(self, sqlite_store):
        await sqlite_store.connect()
        try:
            with pytest.raises(StorageError, match="no such table"):
                await sqlite_store.select("missing").run()
        finally:
            await sqlite_store.close()
