"""SQL Execution Unit: run one compiled statement on a resolved connection."""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from graphpipe.connections.resolver import ResolvedConnection
from graphpipe.core.cancellation import CancellationToken
from graphpipe.core.nodes import SqlNode
from graphpipe.core.result import NodeResult
from graphpipe.errors import (
    GraphpipeError,
    QueryExecutionError,
    QueryTimeoutError,
    RequestCancelledError,
)
from graphpipe.execution.dialects import Dialect, get_dialect
from graphpipe.parsing.compiler import CompiledQuery

logger = logging.getLogger(__name__)


class SqlExecutor:
    """
    Executes SQL nodes with driver-level named binding.

    Each statement runs in its own transaction, bounded by the statement
    timeout or the request deadline (whichever is sooner), and registers a
    server-side cancel on the request's cancellation token.
    """

    def __init__(
        self,
        *,
        dialects: Optional[Dict[str, Dialect]] = None,
        statement_timeout_seconds: float = 30.0,
        max_rows: int = 1000,
    ) -> None:
        self.dialects = dialects
        self.statement_timeout_seconds = statement_timeout_seconds
        self.max_rows = max_rows

    def _timeout(self, token: Optional[CancellationToken]) -> float:
        timeout = self.statement_timeout_seconds
        remaining = token.remaining() if token is not None else None
        if remaining is not None:
            timeout = min(timeout, remaining) if timeout else remaining
        return timeout

    def execute(
        self,
        node: SqlNode,
        compiled: CompiledQuery,
        connection: ResolvedConnection,
        token: Optional[CancellationToken] = None,
    ) -> NodeResult:
        """
        Run ``compiled`` for ``node`` and collect columns and rows.

        Args:
            node: The SQL node (for its refId and dialect)
            compiled: SQL text plus bind values
            connection: Resolved data source
            token: Request cancellation signal

        Returns:
            NodeResult with at most ``max_rows`` rows

        Raises:
            QueryTimeoutError: The statement or request deadline was exceeded
            QueryExecutionError: The database rejected the statement
            RequestCancelledError: The caller cancelled the request
            PoolExhaustedError / ConnectionFailedError: From checkout
        """
        dialect = get_dialect(node.dialect, self.dialects)
        timeout = self._timeout(token)
        if token is not None:
            token.raise_if_cancelled()
            if token.expired():
                raise QueryTimeoutError(node.ref_id, timeout)

        started = time.monotonic()
        with connection.connect() as conn:
            handle = token.register(lambda: dialect.cancel(conn)) if token is not None else None
            try:
                dialect.prepare(conn, timeout)
                result = conn.execute(text(compiled.sql), compiled.params)
                columns = list(result.keys())
                fetched = result.fetchmany(self.max_rows + 1)
                result.close()
                conn.rollback()
            except DBAPIError as e:
                self._raise_for(e, node, connection, dialect, timeout, token)
            except SQLAlchemyError as e:
                raise QueryExecutionError(node.ref_id, connection.config.redact(e)) from None
            finally:
                if handle is not None:
                    token.unregister(handle)

        truncated = len(fetched) > self.max_rows
        rows = [dict(row._mapping) for row in fetched[: self.max_rows]]
        duration_ms = int((time.monotonic() - started) * 1000)

        if truncated:
            logger.info("Node %s truncated to %d rows", node.ref_id, self.max_rows)
        logger.debug("Node %s returned %d rows in %dms", node.ref_id, len(rows), duration_ms)

        return NodeResult(
            ref_id=node.ref_id,
            columns=columns,
            rows=rows,
            truncated=truncated,
            duration_ms=duration_ms,
        )

    def _raise_for(
        self,
        error: DBAPIError,
        node: SqlNode,
        connection: ResolvedConnection,
        dialect: Dialect,
        timeout: float,
        token: Optional[CancellationToken],
    ) -> None:
        if token is not None and token.cancelled:
            if token.expired():
                raise QueryTimeoutError(node.ref_id, timeout) from None
            raise RequestCancelledError(token.reason or "cancelled") from None
        raise database_error(error, node.ref_id, connection, dialect, timeout) from None


def database_error(
    error: DBAPIError,
    ref_id: Optional[str],
    connection: ResolvedConnection,
    dialect: Dialect,
    timeout: Optional[float],
) -> GraphpipeError:
    """Translate a driver error into QueryTimeoutError or QueryExecutionError."""
    if timeout and dialect.is_timeout(error):
        logger.warning("Query %s hit the %.1fs statement timeout", ref_id, timeout)
        return QueryTimeoutError(ref_id, timeout)

    message = connection.config.redact(error.orig if error.orig is not None else error).strip()
    logger.info("Query %s failed on %s: %s", ref_id, connection.data_source_ref, message)
    return QueryExecutionError(ref_id, message)
