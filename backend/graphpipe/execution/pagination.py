"""Windowing for ad-hoc explorer queries."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Connection

from graphpipe.errors import UnsafeQueryError
from graphpipe.parsing.compiler import scan_placeholders
from graphpipe.parsing.sql import MAX_QUERY_LENGTH, validate_read_only

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


@dataclass
class PageResult:
    """One page of a wrapped query plus its totals."""

    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "columns": self.columns,
            "totalCount": self.total_count,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
        }


def clamp_page(page: Any, page_size: Any, max_page_size: int = MAX_PAGE_SIZE) -> tuple:
    """Clamp page to >= 1 and page_size to 1..max_page_size."""
    page = max(1, int(page or 1))
    page_size = min(max(1, int(page_size or DEFAULT_PAGE_SIZE)), max_page_size)
    return page, page_size


def wrap_for_page(sql: str, max_length: int = MAX_QUERY_LENGTH) -> tuple:
    """
    Validate an explorer statement and build its count and page queries.

    Returns:
        Tuple of (count_sql, page_sql); the page query binds
        ``page_limit`` and ``page_offset``

    Raises:
        UnsafeQueryError: Not a single read-only statement, or it uses
            ``:name`` placeholders (explorer queries take no parameters)
    """
    statement = validate_read_only(sql, max_length=max_length)
    escaped, placeholders = scan_placeholders(statement)
    if placeholders:
        raise UnsafeQueryError(
            f"Explorer queries cannot use parameters (found :{placeholders[0]})"
        )

    count_sql = f"SELECT COUNT(*) AS total FROM (\n{escaped}\n) AS _count"
    page_sql = f"SELECT * FROM (\n{escaped}\n) AS _page LIMIT :page_limit OFFSET :page_offset"
    return count_sql, page_sql


def paginate(
    conn: Connection,
    sql: str,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    *,
    max_page_size: int = MAX_PAGE_SIZE,
    max_length: int = MAX_QUERY_LENGTH,
) -> PageResult:
    """
    Run one page of ``sql`` on an open connection.

    A page past the end returns no rows rather than failing.

    Args:
        conn: Open connection (already prepared by the caller's dialect)
        sql: Read-only statement to window
        page: 1-based page number
        page_size: Rows per page
        max_page_size: Upper bound for page_size
        max_length: Maximum statement length

    Returns:
        PageResult
    """
    count_sql, page_sql = wrap_for_page(sql, max_length)
    page, page_size = clamp_page(page, page_size, max_page_size)

    total = conn.execute(text(count_sql)).scalar() or 0
    result = conn.execute(
        text(page_sql),
        {"page_limit": page_size, "page_offset": (page - 1) * page_size},
    )
    columns = list(result.keys())
    rows = [dict(row._mapping) for row in result]

    return PageResult(
        columns=columns,
        rows=rows,
        total_count=int(total),
        page=page,
        page_size=page_size,
    )
