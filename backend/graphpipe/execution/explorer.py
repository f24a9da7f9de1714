"""Ad-hoc browsing of a data source: paged queries, tables, columns, samples."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError

from graphpipe.connections.resolver import ConnectionResolver, ResolvedConnection
from graphpipe.errors import QueryExecutionError, ValidationError
from graphpipe.execution.dialects import DIALECTS, Dialect
from graphpipe.execution.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    PageResult,
    paginate,
    wrap_for_page,
)
from graphpipe.execution.sql_executor import database_error
from graphpipe.parsing.compiler import quote_identifier
from graphpipe.parsing.sql import MAX_QUERY_LENGTH

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_SCHEMAS = frozenset({"pg_catalog", "information_schema", "pg_toast"})
MAX_SAMPLE_ROWS = 100


class Explorer:
    """
    Explorer path over resolved data sources.

    Every call runs in its own read-only transaction (via the dialect) and
    is bounded by the statement timeout.
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        *,
        dialect: Optional[Dialect] = None,
        statement_timeout_seconds: float = 30.0,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        max_sample_rows: int = MAX_SAMPLE_ROWS,
        max_query_length: int = MAX_QUERY_LENGTH,
    ) -> None:
        self.resolver = resolver
        self.dialect = dialect or DIALECTS["sql"]
        self.statement_timeout_seconds = statement_timeout_seconds
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.max_sample_rows = max_sample_rows
        self.max_query_length = max_query_length

    def _run(self, data_source_ref: str, workspace_id: str, work: Callable[[Connection], T]) -> T:
        connection: ResolvedConnection = self.resolver.resolve(data_source_ref, workspace_id)
        with connection.connect() as conn:
            try:
                self.dialect.prepare(conn, self.statement_timeout_seconds)
                result = work(conn)
                conn.rollback()
                return result
            except DBAPIError as e:
                raise database_error(
                    e, None, connection, self.dialect, self.statement_timeout_seconds
                ) from None
            except NoSuchTableError as e:
                raise QueryExecutionError(None, f"Table '{e}' does not exist") from None
            except SQLAlchemyError as e:
                raise QueryExecutionError(None, connection.config.redact(e)) from None

    # ─────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────

    def execute_query(
        self,
        data_source_ref: str,
        workspace_id: str,
        sql: str,
        page: int = 1,
        page_size: Optional[int] = None,
    ) -> PageResult:
        """
        Run one page of an arbitrary read-only query.

        Raises:
            UnsafeQueryError: Before any connection is opened
        """
        wrap_for_page(sql, self.max_query_length)
        result = self._run(
            data_source_ref,
            workspace_id,
            lambda conn: paginate(
                conn,
                sql,
                page,
                page_size or self.default_page_size,
                max_page_size=self.max_page_size,
                max_length=self.max_query_length,
            ),
        )
        logger.debug(
            "Explorer page %d/%d for %s (%d rows)",
            result.page,
            result.total_pages,
            data_source_ref,
            len(result.rows),
        )
        return result

    # ─────────────────────────────────────────────────
    # Schema browsing
    # ─────────────────────────────────────────────────

    def list_tables(self, data_source_ref: str, workspace_id: str) -> List[Dict[str, Any]]:
        """Tables and views in non-system schemas, sorted by schema then name."""

        def work(conn: Connection) -> List[Dict[str, Any]]:
            inspector = inspect(conn)
            tables = []
            for schema in inspector.get_schema_names():
                if schema in SYSTEM_SCHEMAS or schema.startswith("pg_temp"):
                    continue
                for name in inspector.get_table_names(schema=schema):
                    tables.append({"schema": schema, "name": name, "type": "table"})
                for name in inspector.get_view_names(schema=schema):
                    tables.append({"schema": schema, "name": name, "type": "view"})
            return sorted(tables, key=lambda t: (t["schema"], t["name"]))

        return self._run(data_source_ref, workspace_id, work)

    def describe_table(self, data_source_ref: str, workspace_id: str, table: str) -> Dict[str, Any]:
        """Columns of ``table`` (optionally ``schema.table``) with types, nullability and defaults."""
        schema, name = _split_table(table)

        def work(conn: Connection) -> Dict[str, Any]:
            columns = inspect(conn).get_columns(name, schema=schema)
            return {
                "schema": schema,
                "name": name,
                "columns": [
                    {
                        "name": c["name"],
                        "type": str(c["type"]),
                        "nullable": bool(c.get("nullable", True)),
                        "default": None if c.get("default") is None else str(c["default"]),
                    }
                    for c in columns
                ],
            }

        return self._run(data_source_ref, workspace_id, work)

    def sample_rows(
        self,
        data_source_ref: str,
        workspace_id: str,
        table: str,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """First ``limit`` rows of a table, limit clamped to 1..max_sample_rows."""
        quoted = quote_identifier(table)
        limit = min(max(1, int(limit or 1)), self.max_sample_rows)

        def work(conn: Connection) -> Dict[str, Any]:
            result = conn.execute(text(f"SELECT * FROM {quoted} LIMIT :sample_limit"), {"sample_limit": limit})
            return {
                "columns": list(result.keys()),
                "rows": [dict(row._mapping) for row in result],
                "limit": limit,
            }

        return self._run(data_source_ref, workspace_id, work)


def _split_table(table: str) -> tuple:
    quote_identifier(table)
    parts = table.split(".")
    if len(parts) > 2:
        raise ValidationError.single("table", "InvalidDefinition", f"Invalid table name '{table}'")
    if len(parts) == 2:
        return parts[0], parts[1]
    return None, parts[0]
