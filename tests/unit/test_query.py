"""
Unit tests for the query translator.

Tests cover:
- Criteria key parsing
- Loose buffer comparisons
- Synchronized verbs (all, first, find_by, where)
- SELECT compilation for unsynchronized models
"""

import pytest

from replicord.errors import CallbackRequiredError, UnknownFieldError
from replicord.orm.query import SEARCH_METHODS, build_criteria, compare, compile_select, parse_key
from replicord.store.base import QueryKind

from ..app_models import configure_user


@pytest.fixture
def users(server):
    return server.setup_model("User", configure_user)


class TestParseKey:
    """Tests for parse_key."""

    def test_plain_field(self, users):
        assert parse_key(users.schema, "user", "name") == ("name", "=")

    @pytest.mark.parametrize(
        "key,expected",
        [
            ("boxes > ?", ("boxes", ">")),
            ("boxes>=?", ("boxes", ">=")),
            ("boxes == ?", ("boxes", "=")),
            ("boxes <> ?", ("boxes", "!=")),
            ("steamID = ?", ("steam_id", "=")),
        ],
    )
    def test_expressions(self, users, key, expected):
        assert parse_key(users.schema, "user", key) == expected

    def test_identity_column(self, users):
        assert parse_key(users.schema, "user", "id") == ("id", "=")

    def test_unknown_field(self, users):
        with pytest.raises(UnknownFieldError) as exc_info:
            parse_key(users.schema, "user", "nmae")
        assert "name" in exc_info.value.suggestions

    def test_non_string_key(self, users):
        with pytest.raises(TypeError):
            parse_key(users.schema, "user", 5)

    def test_build_criteria_needs_pairs(self, users):
        with pytest.raises(ValueError):
            build_criteria(users, ("name",))
        with pytest.raises(ValueError):
            build_criteria(users, ())


class TestCompare:
    """Tests for buffer comparison semantics."""

    def test_equality_is_string_based(self):
        assert compare(9001, "=", "9001")
        assert compare("a", "!=", "b")
        assert compare(True, "=", "True")

    def test_none_never_matches(self):
        assert not compare(None, "=", None)
        assert not compare(None, "!=", 1)
        assert not compare(1, ">", None)

    def test_ordering_numeric(self):
        assert compare(150, ">", 100)
        assert compare("150", ">", 100)
        assert not compare(9, ">", 10)
        assert compare(10, "<=", 10)

    def test_ordering_falls_back_to_strings(self):
        assert compare("b", ">", "a")
        assert compare("abc", "<", "abd")


class TestSynchronizedVerbs:
    """Tests for buffer-backed searches."""

    def test_all_in_creation_order(self, users):
        created = [users.new(name=str(i)) for i in range(5)]
        assert users.all() == created

    def test_all_returns_copy(self, users):
        users.new(name="a")
        result = users.all()
        result.clear()
        assert len(users.buffer) == 1

    def test_identity_assignment(self, users):
        ids = [users.new().id for _ in range(3)]
        assert ids == [1, 2, 3]

    def test_first_lowest_identity(self, users):
        a, b, c = users.new(), users.new(), users.new()
        a.id = 7
        assert users.first() is b

    def test_first_without_identity(self, server):
        logs = server.setup_model("Log", lambda s, r: s.identity(False).string("line"))
        first = logs.new(line="one")
        logs.new(line="two")
        assert logs.first() is first

    def test_first_empty(self, users):
        assert users.first() is None

    def test_find_by_returns_first_match(self, users):
        a1 = users.new(name="a")
        users.new(name="b")
        users.new(name="a")
        assert users.find_by("name", "a") is a1

    def test_find_by_expression(self, users):
        users.new(name="poor", boxes=10)
        rich = users.new(name="rich", boxes=150)
        assert users.find_by("boxes > ?", 100) is rich

    def test_find_by_accessor(self, users):
        users.new(name="a")
        b = users.new(name="b")
        assert users.find_by_name("b") is b
        assert users.find_by_id(2) is b
        assert users.find_by_id("2") is b

    def test_find_by_missing(self, users):
        users.new(name="a")
        assert users.find_by_name("zzz") is None

    def test_where_conjunctive(self, users):
        users.new(name="a", admin=True, boxes=1)
        match = users.new(name="b", admin=True, boxes=50)
        users.new(name="c", admin=False, boxes=50)
        assert users.where("admin", True, "boxes >= ?", 10) == [match]

    def test_callback_receives_result(self, users):
        record = users.new(name="a")
        seen = []
        users.find_by("name", "a", callback=seen.append)
        assert seen == [record]

    def test_callback_must_be_callable(self, users):
        with pytest.raises(CallbackRequiredError):
            users.all(callback="nope")

    def test_ids_repeat_after_destroy(self, users):
        """Identity follows buffer length, not the highest id seen."""
        users.new()
        second = users.new()
        users.new()
        second.destroy()
        assert users.new().id == 3


class TestCompileSelect:
    """Tests for SELECT compilation."""

    def test_first_orders_and_limits(self, users, store):
        query = compile_select(store, users, SEARCH_METHODS["first"], [])
        assert query.kind == QueryKind.SELECT
        assert query.table == "test_users"
        assert query.order_by == "id"
        assert query.limit_count == 1

    def test_where_conditions(self, users, store):
        criteria = build_criteria(users, ("boxes > ?", 5, "name", "x"))
        query = compile_select(store, users, SEARCH_METHODS["where"], criteria)
        assert [(c.column, c.operator, c.value) for c in query.conditions] == [
            ("boxes", ">", 5),
            ("name", "=", "x"),
        ]
        assert query.limit_count is None
        assert query.order_by is None

    def test_find_by_limits(self, users, store):
        criteria = build_criteria(users, ("name", "x"))
        query = compile_select(store, users, SEARCH_METHODS["find_by"], criteria)
        assert query.limit_count == 1
