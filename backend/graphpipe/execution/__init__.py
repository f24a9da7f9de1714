"""Statement execution against resolved data sources."""

from graphpipe.execution.dialects import Dialect, PostgresDialect
from graphpipe.execution.sql_executor import SqlExecutor
from graphpipe.execution.pagination import PageResult, paginate
from graphpipe.execution.explorer import Explorer

__all__ = [
    "Dialect",
    "PostgresDialect",
    "SqlExecutor",
    "PageResult",
    "paginate",
    "Explorer",
]
