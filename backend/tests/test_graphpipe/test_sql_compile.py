"""Tests for read-only validation and SQL compilation."""

from datetime import datetime, timezone

import pytest

from graphpipe.errors import CompilationError, UnsafeQueryError, ValidationError
from graphpipe.parsing.compiler import compile_sql, quote_identifier, scan_placeholders
from graphpipe.parsing.sql import check_read_only, validate_read_only


class TestValidateReadOnly:
    """Test the read-only guard."""

    @pytest.mark.parametrize(
        "sql",
        [
            "SELECT 1",
            "select * from orders where status = 'open'",
            "WITH t AS (SELECT 1 AS x) SELECT x FROM t",
            "(SELECT 1) UNION (SELECT 2)",
            "SELECT replace(name, 'a', 'b') FROM users",
            "SELECT 'DROP TABLE users' AS note",
            "SELECT 1 -- DELETE everything\n",
        ],
    )
    def test_allowed(self, sql):
        """Test read-only statements pass."""
        assert check_read_only(sql) == (True, None)

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM users",
            "UPDATE users SET admin = true",
            "SELECT 1; DROP TABLE users",
            "WITH gone AS (DELETE FROM users RETURNING *) SELECT * FROM gone",
            "CREATE TABLE x AS SELECT 1",
            "",
            "   ",
        ],
    )
    def test_rejected(self, sql):
        """Test DDL, DML and stacked statements are rejected."""
        with pytest.raises(UnsafeQueryError):
            validate_read_only(sql)

    def test_trailing_semicolon_stripped(self):
        """Test a single trailing semicolon is allowed and removed."""
        assert validate_read_only("SELECT 1;") == "SELECT 1"

    def test_max_length(self):
        """Test overlong statements."""
        with pytest.raises(UnsafeQueryError):
            validate_read_only("SELECT " + "1" * 50, max_length=20)


class TestScanPlaceholders:
    """Test placeholder discovery."""

    def test_names_in_order(self):
        """Test placeholders are unique and ordered."""
        _, names = scan_placeholders("SELECT * FROM t WHERE a = :a AND b = :b OR a = :a")
        assert names == ["a", "b"]

    def test_casts_are_not_placeholders(self):
        """Test ::type casts."""
        sql, names = scan_placeholders("SELECT created_at::date FROM t WHERE id = :id::int")
        assert names == ["id"]
        assert "(:id)::int" in sql
        assert "created_at::date" in sql

    def test_literals_and_comments_ignored(self):
        """Test colons inside strings, identifiers and comments are escaped, not bound."""
        sql, names = scan_placeholders(
            "SELECT ':nope' AS a, \"x:y\" -- :also\nFROM t /* :block */ WHERE z = :real"
        )
        assert names == ["real"]
        assert "'\\:nope'" in sql

    def test_time_of_day_literal(self):
        """Test '12:30' style literals are left intact."""
        _, names = scan_placeholders("SELECT * FROM t WHERE at > '2024-01-01 12:30:00'")
        assert names == []


class TestCompileSql:
    """Test compilation for named binding."""

    def test_values_are_bound_not_interpolated(self):
        """Test the value never appears in the SQL text."""
        compiled = compile_sql(
            "SELECT * FROM users WHERE name = :name",
            ["name"],
            {"name": "x'; DROP TABLE users; --"},
        )
        assert compiled.sql == "SELECT * FROM users WHERE name = :name"
        assert compiled.params == {"name": "x'; DROP TABLE users; --"}

    def test_undeclared_placeholder(self):
        """Test placeholders must be declared."""
        with pytest.raises(CompilationError):
            compile_sql("SELECT :secret", [], {})

    def test_declared_without_value_binds_null(self):
        """Test optional parameters bind NULL."""
        compiled = compile_sql("SELECT :region", ["region"], {})
        assert compiled.params == {"region": None}

    def test_time_params(self):
        """Test implicit time bounds are bound when used."""
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 8, tzinfo=timezone.utc)
        compiled = compile_sql(
            "SELECT * FROM events WHERE at >= :__timeFrom AND at < :__timeTo",
            [],
            {"__timeFrom": start, "__timeTo": end},
        )
        assert compiled.params == {"__timeFrom": start, "__timeTo": end}
        assert compiled.uses_time_range()

    def test_array_values(self):
        """Test tuples bind as lists."""
        compiled = compile_sql("SELECT * FROM t WHERE id = ANY(:ids)", ["ids"], {"ids": (1, 2)})
        assert compiled.params == {"ids": [1, 2]}


class TestQuoteIdentifier:
    """Test identifier quoting."""

    def test_schema_qualified(self):
        """Test each part is quoted."""
        assert quote_identifier("public.orders") == '"public"."orders"'

    @pytest.mark.parametrize("identifier", ["", "orders; DROP", 'a"b', "a..b"])
    def test_invalid(self, identifier):
        """Test unsafe identifiers are rejected."""
        with pytest.raises(ValidationError):
            quote_identifier(identifier)
