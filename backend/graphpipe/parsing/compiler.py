"""SQL compilation with driver-level named parameter binding.

Placeholders use the ``:name`` form. Values are never interpolated into the
SQL text; the compiled statement is executed through SQLAlchemy ``text()``
with the collected values as bind parameters. Colons that must stay literal
(inside strings, quoted identifiers, comments, dollar-quoted bodies, or not
followed by a name) are escaped so ``text()`` does not bind them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from graphpipe.core.timerange import TIME_FROM_PARAM, TIME_TO_PARAM
from graphpipe.errors import CompilationError, ValidationError

IMPLICIT_PARAMS = frozenset({TIME_FROM_PARAM, TIME_TO_PARAM})

_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


@dataclass
class CompiledQuery:
    """SQL ready for ``text()`` plus its bind values."""

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    placeholders: List[str] = field(default_factory=list)

    def uses_time_range(self) -> bool:
        return any(p in IMPLICIT_PARAMS for p in self.placeholders)


def scan_placeholders(sql: str) -> Tuple[str, List[str]]:
    """
    Find ``:name`` placeholders outside literals and comments.

    Args:
        sql: Source SQL

    Returns:
        Tuple of (escaped_sql, placeholder_names in first-appearance order)
    """
    out: List[str] = []
    names: List[str] = []
    i = 0
    n = len(sql)

    while i < n:
        ch = sql[i]

        # 'string' with '' escapes, E'string' with backslash escapes
        if ch == "'":
            backslash = i > 0 and sql[i - 1] in "eE" and (i < 2 or not sql[i - 2].isalnum())
            j = i + 1
            while j < n:
                if backslash and sql[j] == "\\":
                    j += 2
                    continue
                if sql[j] == "'":
                    if j + 1 < n and sql[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            out.append(_escape_literal(sql[i : j + 1]))
            i = j + 1
            continue

        if ch == '"':
            j = sql.find('"', i + 1)
            j = n - 1 if j == -1 else j
            out.append(_escape_literal(sql[i : j + 1]))
            i = j + 1
            continue

        if sql.startswith("--", i):
            j = sql.find("\n", i)
            j = n if j == -1 else j
            out.append(_escape_literal(sql[i:j]))
            i = j
            continue

        if sql.startswith("/*", i):
            depth = 0
            j = i
            while j < n:
                if sql.startswith("/*", j):
                    depth += 1
                    j += 2
                elif sql.startswith("*/", j):
                    depth -= 1
                    j += 2
                    if depth == 0:
                        break
                else:
                    j += 1
            out.append(_escape_literal(sql[i:j]))
            i = j
            continue

        if ch == "$":
            tag = _DOLLAR_TAG.match(sql, i)
            if tag and not (i > 0 and (sql[i - 1].isalnum() or sql[i - 1] == "_")):
                close = sql.find(tag.group(0), tag.end())
                j = n if close == -1 else close + len(tag.group(0))
                out.append(_escape_literal(sql[i:j]))
                i = j
                continue

        if ch == ":":
            # ::cast
            if sql.startswith("::", i):
                out.append("::")
                i += 2
                continue
            prev = sql[i - 1] if i > 0 else ""
            name = _NAME.match(sql, i + 1)
            if name and not (prev.isalnum() or prev in ("_", "\\")):
                names.append(name.group(0))
                # :name::type would be read by text() as a shorter bind name
                if sql.startswith("::", name.end()):
                    out.append("(:" + name.group(0) + ")")
                else:
                    out.append(":" + name.group(0))
                i = name.end()
                continue
            out.append(_escape_colon(sql, i))
            i += 1
            continue

        out.append(ch)
        i += 1

    unique = list(dict.fromkeys(names))
    return "".join(out), unique


def _escape_colon(sql: str, i: int) -> str:
    """Escape a literal colon that ``text()`` would otherwise treat as a bind."""
    following = sql[i + 1] if i + 1 < len(sql) else ""
    if following and (following.isalnum() or following == "_"):
        return "\\:"
    return ":"


def _escape_literal(chunk: str) -> str:
    return re.sub(r"(?<![:\w\\]):(?=\w)", r"\\:", chunk)


def compile_sql(
    sql: str,
    declared: Iterable[str],
    values: Optional[Mapping[str, Any]] = None,
    *,
    ref_id: str = "query",
) -> CompiledQuery:
    """
    Compile SQL for named binding.

    Every placeholder must be a declared parameter or one of the implicit
    time-range parameters. Declared parameters without a value bind NULL.

    Args:
        sql: Source SQL with :name placeholders
        declared: Names of declared parameters
        values: Validated parameter values (plus implicit time bounds)
        ref_id: Node identifier used in error messages

    Returns:
        CompiledQuery

    Raises:
        CompilationError: If a placeholder is undeclared or has no value

    Examples:
        >>> compile_sql("SELECT * FROM t WHERE id = :id", ["id"], {"id": 7}).params
        {'id': 7}
    """
    values = values or {}
    declared_set = set(declared)
    escaped, placeholders = scan_placeholders(sql)

    params: Dict[str, Any] = {}
    for name in placeholders:
        if name in IMPLICIT_PARAMS:
            if name not in values:
                raise CompilationError(ref_id, f"Time range parameter ':{name}' is not available")
            params[name] = values[name]
        elif name in declared_set:
            params[name] = _convert_value(values.get(name))
        else:
            raise CompilationError(ref_id, f"Placeholder ':{name}' is not a declared parameter")

    return CompiledQuery(sql=escaped, params=params, placeholders=placeholders)


def _convert_value(value: Any) -> Any:
    """Normalize a validated value for the driver; sequences bind as arrays."""
    if isinstance(value, tuple):
        return list(value)
    return value


def quote_identifier(identifier: str) -> str:
    """
    Quote a (possibly schema-qualified) identifier for PostgreSQL.

    Raises:
        ValidationError: If any part contains characters outside [A-Za-z0-9_$ -]
    """
    if not identifier:
        raise ValidationError.single("identifier", "InvalidDefinition", "Identifier cannot be empty")

    quoted = []
    for part in identifier.split("."):
        if not part or not re.fullmatch(r"[A-Za-z0-9_$ \-]+", part):
            raise ValidationError.single(
                "identifier", "InvalidDefinition", f"Invalid identifier '{part}'"
            )
        quoted.append('"' + part.replace('"', '""') + '"')
    return ".".join(quoted)
