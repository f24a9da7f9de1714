"""Per-engine hooks around statement execution."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError

logger = logging.getLogger(__name__)

# SQLSTATE raised by PostgreSQL for statement_timeout and pg_cancel_backend
PG_QUERY_CANCELED = "57014"


class Dialect:
    """
    Engine hooks used by the SQL executor.

    The base class is a no-op and works for any SQLAlchemy engine.
    """

    name = "generic"

    def prepare(self, conn: Connection, timeout_seconds: Optional[float]) -> None:
        """Run before the statement, inside the same transaction."""
        pass

    def cancel(self, conn: Connection) -> None:
        """Cancel the statement running on ``conn`` from another thread."""
        pass

    def is_timeout(self, error: DBAPIError) -> bool:
        return False


class PostgresDialect(Dialect):
    """PostgreSQL: read-only transaction, statement_timeout, server-side cancel."""

    name = "postgresql"

    def prepare(self, conn: Connection, timeout_seconds: Optional[float]) -> None:
        conn.execute(text("SET TRANSACTION READ ONLY"))
        if timeout_seconds:
            conn.execute(
                text("SELECT set_config('statement_timeout', :value, true)"),
                {"value": f"{max(1, int(timeout_seconds * 1000))}ms"},
            )

    def cancel(self, conn: Connection) -> None:
        dbapi_connection = conn.connection.dbapi_connection
        if dbapi_connection is not None and hasattr(dbapi_connection, "cancel"):
            dbapi_connection.cancel()
            logger.info("Sent cancel request to PostgreSQL backend")

    def is_timeout(self, error: DBAPIError) -> bool:
        return getattr(error.orig, "pgcode", None) == PG_QUERY_CANCELED


DIALECTS: Dict[str, Dialect] = {
    "sql": PostgresDialect(),
}


def get_dialect(tag: str, registry: Optional[Dict[str, Dialect]] = None) -> Dialect:
    registry = DIALECTS if registry is None else registry
    try:
        return registry[tag]
    except KeyError:
        raise ValueError(f"Unsupported dialect '{tag}'") from None
