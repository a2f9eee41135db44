"""Tests for query templates and statement builders."""

import math
from datetime import date
from decimal import Decimal

import pytest

from tursomap import (
    DeleteQuery,
    Expression,
    InsertQuery,
    LocalTransport,
    MissingVariable,
    Query,
    SelectQuery,
    UnknownField,
    UnsupportedValueType,
    UnusedVariable,
    UpdateQuery,
    escape,
)
from tursomap.state import decode_cell


class TestEscape:
    """Tests for SQL literal escaping."""

    def test_scalars(self):
        """Test the supported scalar types."""
        assert escape(None) == "NULL"
        assert escape(True) == "TRUE"
        assert escape(False) == "FALSE"
        assert escape(42) == "42"
        assert escape(-7) == "-7"
        assert escape(1.5) == "1.5"

    def test_bool_is_not_an_int(self):
        """Test that booleans are checked before integers."""
        assert escape([True, 1]) == "(TRUE, 1)"

    def test_string_quotes_are_doubled(self):
        """Test that embedded single quotes are doubled."""
        assert escape("O'Reilly") == "'O''Reilly'"
        assert escape("") == "''"

    def test_lists_and_tuples(self):
        """Test recursive escaping of sequences."""
        assert escape([1, "a", None]) == "(1, 'a', NULL)"
        assert escape(("x", 2.25)) == "('x', 2.25)"

    @pytest.mark.parametrize("value", [math.nan, math.inf, b"bytes", Decimal("1.5"), date(2020, 1, 1), {"a": 1}])
    def test_unsupported_values(self, value):
        """Test that values outside the closed type set are rejected."""
        with pytest.raises(UnsupportedValueType):
            escape(value)

    def test_integer_range(self):
        """Test that integers outside SQLite's 64-bit range are rejected."""
        assert escape(2**63 - 1) == "9223372036854775807"
        assert escape(-(2**63)) == "-9223372036854775808"
        with pytest.raises(UnsupportedValueType):
            escape(2**63)
        with pytest.raises(UnsupportedValueType):
            escape(-(2**63) - 1)

    def test_unsupported_value_is_a_type_error(self):
        with pytest.raises(TypeError):
            escape(object())


class TestTemplate:
    """Tests for raw and variable substitution."""

    def test_raws_and_variables(self):
        """Test a template with both kinds of placeholder."""
        query = Query("SELECT * FROM @table WHERE id = {id}", {"id": 1}, {"table": "users"})
        assert str(query) == "SELECT * FROM users WHERE id = 1"

    def test_missing_raw_is_dropped_with_whitespace(self):
        """Test that unset optional clauses disappear cleanly."""
        query = Query("SELECT * FROM @table @where @limit", raws={"table": "users"})
        assert query.render() == "SELECT * FROM users"

    def test_empty_list_raw_is_dropped(self):
        query = Query("SELECT @cols FROM users").raw("cols", [])
        assert query.render() == "SELECT FROM users"

    def test_list_raw_is_joined_and_wrapped(self):
        query = Query("INSERT INTO users @names").raw("names", ["a", "b"])
        assert query.render() == "INSERT INTO users (a, b)"

        query.bind(" | ", wrap=False)
        assert query.render() == "INSERT INTO users a | b"

    def test_unused_variable(self):
        """Test that a supplied but unreferenced variable is an error."""
        with pytest.raises(UnusedVariable):
            Query("SELECT 1", {"unused": 1}).render()

    def test_missing_variable(self):
        """Test that a referenced but unsupplied variable is an error."""
        with pytest.raises(MissingVariable):
            Query("SELECT * FROM users WHERE id = {id}").render()

    def test_template_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            Query("SELECT {x}").render()

    def test_values_are_not_rescanned(self):
        """Test that inserted values cannot inject further tokens."""
        query = Query("SELECT {value}", {"value": "@table {other}"})
        assert query.render() == "SELECT '@table {other}'"

    def test_raw_fragments_are_not_rescanned(self):
        query = Query("SELECT @expr", raws={"expr": "{not_a_variable}"})
        assert query.render() == "SELECT {not_a_variable}"

    def test_nested_fragments(self):
        query = Query("SELECT * FROM users WHERE @condition")
        query.raw("condition", query("age > {age}").var("age", 18))
        assert query.render() == "SELECT * FROM users WHERE age > 18"

    def test_render_is_repeatable(self):
        query = SelectQuery("users").limit(5)
        assert query.render() == query.render() == "SELECT * FROM users LIMIT 5"

    def test_calling_a_query_creates_an_independent_fragment(self):
        parent = Query("SELECT @a").raw("a", "1")
        child = parent("SELECT {x}")
        assert child is not parent
        assert child.template == "SELECT {x}"
        with pytest.raises(MissingVariable):
            child.render()


class TestExpression:
    """Tests for condition builders."""

    def setup_method(self):
        self.expr = Expression()

    def test_eq(self):
        assert str(self.expr.eq("name", "Bob")) == "name = 'Bob'"

    def test_eq_none_is_null_test(self):
        assert str(self.expr.eq("died", None)) == "died IS NULL"

    def test_eq_list_is_in(self):
        assert str(self.expr.eq("id", [1, 2])) == "id IN (1, 2)"

    def test_ne(self):
        assert str(self.expr.ne("age", 3)) == "(age <> 3 OR age IS NULL)"
        assert str(self.expr.ne("died", None)) == "died IS NOT NULL"
        assert str(self.expr.ne("id", [1, 2])) == "id NOT IN (1, 2)"

    def test_comparisons(self):
        assert str(self.expr.gt("age", 1)) == "age > 1"
        assert str(self.expr.gte("age", 1)) == "age >= 1"
        assert str(self.expr.lt("age", 1)) == "age < 1"
        assert str(self.expr.lte("age", 1)) == "age <= 1"
        assert str(self.expr.like("name", "J%")) == "name LIKE 'J%'"
        assert str(self.expr.nlike("name", "J%")) == "name NOT LIKE 'J%'"
        assert str(self.expr.cmp("age", 5, "<>")) == "age <> 5"

    def test_empty_in_lists(self):
        """Test that empty IN lists render as constant conditions."""
        assert str(self.expr.in_("id", [])) == "1 = 0"
        assert str(self.expr.notin("id", [])) == "1 = 1"

    def test_grouping(self):
        a = self.expr.eq("a", 1)
        b = self.expr.eq("b", 2)
        assert str(self.expr.all(a, b)) == "(a = 1 AND b = 2)"
        assert str(self.expr.any(a, b)) == "(a = 1 OR b = 2)"

    def test_empty_groups(self):
        """Test that empty groups render as constant conditions."""
        assert str(self.expr.all()) == "1 = 1"
        assert str(self.expr.any()) == "1 = 0"

    def test_where_with_empty_group(self):
        query = SelectQuery("users")
        expr = query.expression()
        assert str(query.where(expr.all())) == "SELECT * FROM users WHERE 1 = 1"
        assert str(query.where(expr.any())) == "SELECT * FROM users WHERE 1 = 0"


class TestSelectQuery:
    """Tests for SELECT statements."""

    def test_default(self):
        assert str(SelectQuery("users")) == "SELECT * FROM users"

    def test_full_statement(self):
        query = SelectQuery("users")
        expr = query.expression()
        query.fetch("id", "email")
        query.where(expr.eq("last_name", "Wick"), expr.gt("age", 30))
        query.order(query.sort("first_name", "ASC"), query.sort("age", "desc"))
        query.limit(10).offset(20)

        assert str(query) == (
            "SELECT id, email FROM users WHERE last_name = 'Wick' AND age > 30 "
            "ORDER BY first_name ASC, age DESC LIMIT 10 OFFSET 20"
        )

    def test_clearing_clauses(self):
        query = SelectQuery("users").limit(10).offset(5)
        query.where().order().limit(None).offset(None)
        assert str(query) == "SELECT * FROM users"

    def test_invalid_sort_direction(self):
        with pytest.raises(ValueError):
            SelectQuery("users").sort("age", "sideways")

    def test_map_translates_names(self):
        """Test that field names are mapped to columns without touching the original."""
        query = SelectQuery("users")
        expr = query.expression()
        query.where(expr.eq("last_name", "Wick"))
        query.order(query.sort("first_name", "asc")).limit(1).offset(0)

        mapped = query.map({"last_name": "lastName", "first_name": "firstName"})

        assert str(mapped) == (
            "SELECT * FROM users WHERE lastName = 'Wick' ORDER BY firstName ASC LIMIT 1 OFFSET 0"
        )
        assert str(query) == (
            "SELECT * FROM users WHERE last_name = 'Wick' ORDER BY first_name ASC LIMIT 1 OFFSET 0"
        )

    def test_map_unknown_field(self):
        query = SelectQuery("users")
        query.where(query.expression().eq("nickname", "JW"))
        with pytest.raises(UnknownField):
            query.map({"last_name": "lastName"})


class TestWriteQueries:
    """Tests for INSERT, UPDATE and DELETE statements."""

    def test_insert(self):
        query = InsertQuery("users").values({"first_name": "John", "age": None})
        assert str(query) == "INSERT INTO users (first_name, age) VALUES ('John', NULL)"

    def test_insert_default_values(self):
        assert str(InsertQuery("users").values({})) == "INSERT INTO users DEFAULT VALUES"

    def test_insert_map(self):
        query = InsertQuery("users").values({"first_name": "John"}).map({"first_name": "firstName"})
        assert str(query) == "INSERT INTO users (firstName) VALUES ('John')"

    def test_update(self):
        query = UpdateQuery("users")
        expr = query.expression()
        query.set(query.assign("age", 40), query.assign("last_name", "Wick"))
        query.where(expr.eq("id", 1))
        assert str(query) == "UPDATE users SET age = 40, last_name = 'Wick' WHERE id = 1"

    def test_delete(self):
        query = DeleteQuery("users")
        assert str(query) == "DELETE FROM users"

        query.where(query.expression().eq("id", 3))
        assert str(query) == "DELETE FROM users WHERE id = 3"


@pytest.mark.parametrize(
    "value",
    [None, 0, -1, 2**63 - 1, -(2**63) + 1, 1.5, -0.1, 1e300, "", "O'Reilly", "line\nbreak", "snow ☃"],
)
@pytest.mark.asyncio
async def test_escaped_literals_read_back_unchanged(value):
    """Test that SQLite parses escaped literals back to the same value."""
    transport = LocalTransport()
    envelope = await transport.execute(f"SELECT {escape(value)} AS v")
    await transport.aclose()

    assert envelope.error is None
    read = decode_cell(envelope.rows[0][0])
    assert read == value
    assert type(read) is type(value)
