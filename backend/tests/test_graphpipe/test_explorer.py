"""Tests for explorer pagination and schema browsing against SQLite."""

import pytest

from graphpipe.connections.resolver import ConnectionResolver
from graphpipe.errors import QueryExecutionError, UnsafeQueryError, ValidationError
from graphpipe.execution.dialects import Dialect
from graphpipe.execution.explorer import Explorer
from graphpipe.execution.pagination import PageResult, clamp_page, wrap_for_page

WORKSPACE = "ws-1"
DATA_SOURCE = "warehouse"


@pytest.fixture
def explorer(resolver: ConnectionResolver) -> Explorer:
    """Explorer with a no-op dialect."""
    return Explorer(resolver, dialect=Dialect(), max_sample_rows=5)


class TestPaginationHelpers:
    """Test windowing helpers."""

    def test_wrap(self):
        """Test the count and page wrappers."""
        count_sql, page_sql = wrap_for_page("SELECT * FROM events;")
        assert count_sql.startswith("SELECT COUNT(*) AS total FROM (")
        assert page_sql.endswith("LIMIT :page_limit OFFSET :page_offset")
        assert ";" not in page_sql

    def test_placeholders_rejected(self):
        """Test explorer queries take no parameters."""
        with pytest.raises(UnsafeQueryError):
            wrap_for_page("SELECT * FROM events WHERE id = :id")

    def test_clamp(self):
        """Test page and page size bounds."""
        assert clamp_page(0, 5000, 1000) == (1, 1000)
        assert clamp_page(3, None, 1000) == (3, 100)

    def test_total_pages(self):
        """Test the page count rounds up and is zero when empty."""
        assert PageResult(total_count=105, page_size=50).total_pages == 3
        assert PageResult(total_count=0, page_size=50).total_pages == 0


class TestExecuteQuery:
    """Test paged ad-hoc queries."""

    def test_pages(self, explorer: Explorer):
        """Test 105 rows in pages of 50."""
        first = explorer.execute_query(DATA_SOURCE, WORKSPACE, "SELECT id, name FROM events ORDER BY id", 1, 50)
        assert first.total_count == 105
        assert first.total_pages == 3
        assert first.columns == ["id", "name"]
        assert len(first.rows) == 50
        assert first.rows[0] == {"id": 1, "name": "event-1"}

        last = explorer.execute_query(DATA_SOURCE, WORKSPACE, "SELECT id, name FROM events ORDER BY id", 3, 50)
        assert [r["id"] for r in last.rows] == list(range(101, 106))

    def test_page_past_the_end(self, explorer: Explorer):
        """Test a page beyond the last returns no rows."""
        page = explorer.execute_query(DATA_SOURCE, WORKSPACE, "SELECT id FROM events", 4, 50)
        assert page.rows == []
        assert page.total_count == 105

    def test_payload_shape(self, explorer: Explorer):
        """Test the camelCase payload."""
        payload = explorer.execute_query(DATA_SOURCE, WORKSPACE, "SELECT id FROM events", 1, 10).to_dict()
        assert set(payload) == {"rows", "columns", "totalCount", "page", "pageSize", "totalPages"}
        assert payload["totalPages"] == 11

    def test_unsafe_query_rejected_before_connecting(self, explorer: Explorer, engines_built):
        """Test writes never reach the data source."""
        with pytest.raises(UnsafeQueryError):
            explorer.execute_query(DATA_SOURCE, WORKSPACE, "DROP TABLE events")
        assert engines_built == []

    def test_database_error(self, explorer: Explorer):
        """Test driver errors become QueryExecutionError."""
        with pytest.raises(QueryExecutionError):
            explorer.execute_query(DATA_SOURCE, WORKSPACE, "SELECT nope FROM events")


class TestSchemaBrowsing:
    """Test tables, columns and samples."""

    def test_list_tables(self, explorer: Explorer):
        """Test tables and views are listed sorted by schema and name."""
        tables = explorer.list_tables(DATA_SOURCE, WORKSPACE)
        assert [(t["name"], t["type"]) for t in tables] == [
            ("eu_sales", "view"),
            ("events", "table"),
            ("orders", "table"),
            ("sales", "table"),
        ]

    def test_describe_table(self, explorer: Explorer):
        """Test column names, types and nullability."""
        description = explorer.describe_table(DATA_SOURCE, WORKSPACE, "events")
        columns = {c["name"]: c for c in description["columns"]}
        assert description["name"] == "events"
        assert list(columns) == ["id", "name"]
        assert columns["name"]["nullable"] is False
        assert columns["id"]["type"] == "INTEGER"

    def test_describe_missing_table(self, explorer: Explorer):
        """Test unknown tables."""
        with pytest.raises(QueryExecutionError):
            explorer.describe_table(DATA_SOURCE, WORKSPACE, "nope")

    def test_sample_rows_clamped(self, explorer: Explorer):
        """Test the sample limit is capped."""
        sample = explorer.sample_rows(DATA_SOURCE, WORKSPACE, "events", limit=50)
        assert sample["limit"] == 5
        assert len(sample["rows"]) == 5
        assert sample["columns"] == ["id", "name"]

    @pytest.mark.parametrize("table", ["events; DROP TABLE events", "a.b.c"])
    def test_invalid_table_names(self, explorer: Explorer, table):
        """Test table names are validated before use."""
        with pytest.raises(ValidationError):
            explorer.describe_table(DATA_SOURCE, WORKSPACE, table)
