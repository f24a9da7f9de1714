"""SQL validation and compilation for graphpipe."""

from graphpipe.parsing.sql import check_read_only, validate_read_only
from graphpipe.parsing.compiler import CompiledQuery, compile_sql, quote_identifier

__all__ = [
    "check_read_only",
    "validate_read_only",
    "CompiledQuery",
    "compile_sql",
    "quote_identifier",
]
