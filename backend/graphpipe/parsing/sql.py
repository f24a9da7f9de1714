"""Read-only statement guard built on the sqlglot tokenizer."""

from __future__ import annotations

from typing import List, Optional, Tuple

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from graphpipe.errors import UnsafeQueryError

MAX_QUERY_LENGTH = 10000

DANGEROUS_KEYWORDS = frozenset(
    {
        "DROP",
        "DELETE",
        "INSERT",
        "UPDATE",
        "ALTER",
        "CREATE",
        "TRUNCATE",
        "EXEC",
        "EXECUTE",
        "GRANT",
        "REVOKE",
        "MERGE",
        "REPLACE",
        "COPY",
        "CALL",
        "VACUUM",
    }
)

# Tokens whose text is data, not SQL keywords
_LITERAL_TOKEN_TYPES = frozenset(
    getattr(TokenType, name)
    for name in (
        "STRING",
        "NATIONAL_STRING",
        "RAW_STRING",
        "HEREDOC_STRING",
        "BIT_STRING",
        "HEX_STRING",
        "BYTE_STRING",
        "UNICODE_STRING",
        "IDENTIFIER",
    )
    if hasattr(TokenType, name)
)


def tokenize(sql: str, dialect: str = "postgres") -> List[Token]:
    """Tokenize SQL; comments are attached to tokens, not returned."""
    try:
        return sqlglot.tokenize(sql, read=dialect)
    except TokenError as e:
        raise UnsafeQueryError(f"Query could not be tokenized: {e}") from None


def validate_read_only(
    sql: str,
    *,
    max_length: int = MAX_QUERY_LENGTH,
    dialect: str = "postgres",
) -> str:
    """
    Check that ``sql`` is a single read-only query.

    Args:
        sql: Statement to check
        max_length: Maximum accepted length in characters
        dialect: sqlglot dialect used for tokenizing

    Returns:
        The statement without trailing semicolons, ready to be wrapped

    Raises:
        UnsafeQueryError: Empty, too long, not a SELECT/WITH, multiple
            statements, or containing DDL/DML keywords
    """
    if not sql or not sql.strip():
        raise UnsafeQueryError("Query cannot be empty")

    if len(sql) > max_length:
        raise UnsafeQueryError(f"Query exceeds maximum length of {max_length} characters")

    tokens = tokenize(sql, dialect)
    if not tokens:
        raise UnsafeQueryError("Query cannot be empty")

    # Split off the first statement; only semicolons may follow it
    end = len(tokens)
    for i, token in enumerate(tokens):
        if token.token_type == TokenType.SEMICOLON:
            end = i
            break
    trailing = [t for t in tokens[end:] if t.token_type != TokenType.SEMICOLON]
    if trailing:
        raise UnsafeQueryError("Multiple statements are not allowed")

    statement = tokens[:end]
    if not statement:
        raise UnsafeQueryError("Query cannot be empty")

    first = next((t for t in statement if t.token_type != TokenType.L_PAREN), None)
    if first is None or first.text.upper() not in ("SELECT", "WITH"):
        raise UnsafeQueryError("Only SELECT queries are allowed")

    for i, token in enumerate(statement):
        if token.token_type in _LITERAL_TOKEN_TYPES:
            continue
        keyword = token.text.upper()
        if keyword not in DANGEROUS_KEYWORDS:
            continue
        # replace(...) and friends are functions, not statements
        following = statement[i + 1] if i + 1 < len(statement) else None
        if following is not None and following.token_type == TokenType.L_PAREN:
            continue
        raise UnsafeQueryError(f"Query contains forbidden keyword: {keyword}")

    if end < len(tokens):
        return sql[: tokens[end].start].rstrip()
    return sql.strip()


def check_read_only(sql: str, *, max_length: int = MAX_QUERY_LENGTH) -> Tuple[bool, Optional[str]]:
    """
    Non-raising variant of validate_read_only.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        validate_read_only(sql, max_length=max_length)
        return True, None
    except UnsafeQueryError as e:
        return False, str(e)
