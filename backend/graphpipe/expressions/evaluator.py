"""Derived node evaluation: math, reduce and resample over upstream results.

Null policy: values are never silently dropped. In ``math`` a key missing
from one series, a null operand, or a division by zero yields a null value
for that key. ``resample`` emits empty buckets as null rows unless the node
asks to omit them.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence

from graphpipe.core.parameters import coerce_number, coerce_timestamp
from graphpipe.core.result import NodeResult
from graphpipe.errors import InvalidExpressionError, UpstreamMissingError
from graphpipe.expressions.parser import (
    BinaryOp,
    Call,
    Duration,
    Name,
    Node,
    Number,
    Str,
    UnaryOp,
    parse_expression,
    references,
)

if TYPE_CHECKING:
    from graphpipe.core.nodes import DerivedNode

logger = logging.getLogger(__name__)

VALUE_COLUMN = "value"
MAX_RESAMPLE_BUCKETS = 100_000

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────
# Aggregations
# ─────────────────────────────────────────────────


def _non_null(values: Sequence[Any]) -> List[Any]:
    return [v for v in values if v is not None]


def _sum(values: Sequence[Any]) -> Any:
    present = _non_null(values)
    return sum(present) if present else None


def _avg(values: Sequence[Any]) -> Any:
    present = _non_null(values)
    return sum(present) / len(present) if present else None


def _min(values: Sequence[Any]) -> Any:
    present = _non_null(values)
    return min(present) if present else None


def _max(values: Sequence[Any]) -> Any:
    present = _non_null(values)
    return max(present) if present else None


def _last(values: Sequence[Any]) -> Any:
    return values[-1] if values else None


def _count(values: Sequence[Any]) -> int:
    return len(_non_null(values))


REDUCERS: Dict[str, Callable[[Sequence[Any]], Any]] = {
    "sum": _sum,
    "avg": _avg,
    "min": _min,
    "max": _max,
    "last": _last,
    "count": _count,
}


def _coalesce(*args: Any) -> Any:
    for a in args:
        if a is not None:
            return a
    return None


# name -> (min args, max args, fn); fn is only called with non-null args except coalesce
MATH_FUNCTIONS: Dict[str, tuple] = {
    "abs": (1, 1, abs),
    "round": (1, 2, lambda x, n=0: round(x, int(n))),
    "floor": (1, 1, math.floor),
    "ceil": (1, 1, math.ceil),
    "sqrt": (1, 1, lambda x: math.sqrt(x) if x >= 0 else None),
    "min": (2, 8, min),
    "max": (2, 8, max),
    "coalesce": (1, 8, _coalesce),
}


# ─────────────────────────────────────────────────
# Series view of a node result
# ─────────────────────────────────────────────────


@dataclass
class Series:
    """
    Key/value view of a node result.

    The key is the first column and the value the first later column
    holding numeric data. A single-column, single-row result is a scalar.
    """

    key_column: Optional[str]
    value_column: Optional[str]
    keys: List[Any]
    values: List[Any]
    scalar: bool = False

    def as_map(self) -> Dict[Any, Any]:
        return {_hashable(k): v for k, v in zip(self.keys, self.values)}


def to_series(result: NodeResult, expression: str, exclude: Sequence[str] = ()) -> Series:
    columns = list(result.columns)
    rows = result.rows

    if len(columns) == 1:
        only = columns[0]
        values = [coerce_number(r.get(only)) for r in rows]
        if len(rows) == 1:
            return Series(None, only, [], values, scalar=True)
        return Series(None, only, list(range(len(rows))), values)

    if not columns:
        return Series(None, None, [], [])

    key_column = columns[0]
    candidates = [c for c in columns[1:] if c not in exclude]
    value_column = _find_numeric_column(rows, candidates)
    if value_column is None:
        if rows and candidates:
            raise InvalidExpressionError(
                expression, f"Result '{result.ref_id}' has no numeric value column", ref_id=result.ref_id
            )
        value_column = candidates[0] if candidates else None

    keys = [r.get(key_column) for r in rows]
    values = [coerce_number(r.get(value_column)) if value_column else None for r in rows]
    return Series(key_column, value_column, keys, values)


def _find_numeric_column(rows: Sequence[Mapping[str, Any]], candidates: Sequence[str]) -> Optional[str]:
    for column in candidates:
        seen_value = False
        numeric = True
        for row in rows:
            raw = row.get(column)
            if raw is None:
                continue
            seen_value = True
            if coerce_number(raw) is None:
                numeric = False
                break
        if seen_value and numeric:
            return column
    return None


def _hashable(key: Any) -> Any:
    if isinstance(key, datetime) and key.tzinfo is None:
        return key.replace(tzinfo=timezone.utc)
    if isinstance(key, (list, dict)):
        return repr(key)
    return key


def sort_key(value: Any) -> tuple:
    """Total order over mixed key types: nulls last, then timestamps, numbers, strings."""
    if value is None:
        return (3, 0)
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return (0, aware.timestamp())
    if isinstance(value, date):
        return (0, datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp())
    if isinstance(value, bool):
        return (2, str(value))
    if isinstance(value, (int, float)):
        return (1, value)
    return (2, str(value))


# ─────────────────────────────────────────────────
# Static checks (no data needed)
# ─────────────────────────────────────────────────


def check_expression(node: DerivedNode) -> Node:
    """
    Parse and shape-check a derived node's expression.

    Raises:
        InvalidExpressionError: If the expression does not fit the operation
    """
    ast = parse_expression(node.expression, ref_id=node.ref_id)

    def fail(message: str) -> InvalidExpressionError:
        return InvalidExpressionError(node.expression, message, ref_id=node.ref_id)

    if node.operation == "math":
        _check_math(ast, fail)
    elif node.operation == "reduce":
        _reduce_parts(ast, fail)
    elif node.operation == "resample":
        _resample_parts(ast, fail)

    if not references(ast) and node.operation != "math":
        raise fail(f"{node.operation} must reference a query refId")
    return ast


def _check_math(ast: Node, fail: Callable[[str], InvalidExpressionError]) -> None:
    if isinstance(ast, Name):
        if not ast.is_ref:
            raise fail(f"Unknown identifier '{ast.name}'")
    elif isinstance(ast, (Duration, Str)):
        raise fail("Durations and strings are not allowed in math expressions")
    elif isinstance(ast, UnaryOp):
        _check_math(ast.operand, fail)
    elif isinstance(ast, BinaryOp):
        _check_math(ast.left, fail)
        _check_math(ast.right, fail)
    elif isinstance(ast, Call):
        spec = MATH_FUNCTIONS.get(ast.func)
        if spec is None:
            raise fail(f"Unknown function '{ast.func}'")
        low, high, _ = spec
        if not low <= len(ast.args) <= high:
            raise fail(f"{ast.func}() takes {low}..{high} arguments, got {len(ast.args)}")
        for arg in ast.args:
            _check_math(arg, fail)


def _reduce_parts(ast: Node, fail: Callable[[str], InvalidExpressionError]) -> tuple:
    if not isinstance(ast, Call) or ast.func not in REDUCERS:
        raise fail(f"reduce expects one of {', '.join(REDUCERS)}, e.g. sum(A)")
    if not 1 <= len(ast.args) <= 2:
        raise fail(f"{ast.func}() takes a refId and an optional group column")
    source = ast.args[0]
    if not isinstance(source, Name) or not source.is_ref:
        raise fail(f"First argument of {ast.func}() must be a refId")
    group = None
    if len(ast.args) == 2:
        arg = ast.args[1]
        if isinstance(arg, Name) and not arg.is_ref:
            group = arg.name
        elif isinstance(arg, Str):
            group = arg.value
        else:
            raise fail("Group argument must be a column name")
    return ast.func, source.name, group


def _resample_parts(ast: Node, fail: Callable[[str], InvalidExpressionError]) -> tuple:
    if not isinstance(ast, Call) or ast.func != "resample":
        raise fail("resample expects resample(<refId>, <duration>, <aggregation>)")
    if len(ast.args) not in (2, 3):
        raise fail("resample() takes a refId, a duration and an optional aggregation")
    source, interval = ast.args[0], ast.args[1]
    if not isinstance(source, Name) or not source.is_ref:
        raise fail("First argument of resample() must be a refId")
    if not isinstance(interval, Duration):
        raise fail("Second argument of resample() must be a duration such as 1h or 1d")
    reducer = "avg"
    if len(ast.args) == 3:
        arg = ast.args[2]
        if not isinstance(arg, Name) or arg.name.lower() not in REDUCERS:
            raise fail(f"Aggregation must be one of {', '.join(REDUCERS)}")
        reducer = arg.name.lower()
    return source.name, interval.seconds, reducer


# ─────────────────────────────────────────────────
# Evaluation
# ─────────────────────────────────────────────────


def evaluate(node: DerivedNode, upstream: Mapping[str, NodeResult]) -> NodeResult:
    """
    Compute a derived node from already-computed upstream results.

    Args:
        node: The derived node
        upstream: Results keyed by refId

    Returns:
        NodeResult for the node

    Raises:
        InvalidExpressionError: Unparseable expression or unusable input
        UpstreamMissingError: A referenced refId has no result
    """
    ast = check_expression(node)
    for ref in references(ast):
        if ref not in upstream:
            raise UpstreamMissingError(node.ref_id, ref)

    if node.operation == "math":
        columns, rows = _evaluate_math(node, ast, upstream)
    elif node.operation == "reduce":
        columns, rows = _evaluate_reduce(node, ast, upstream)
    else:
        columns, rows = _evaluate_resample(node, ast, upstream)

    return NodeResult(ref_id=node.ref_id, columns=columns, rows=rows)


def _evaluate_math(node: DerivedNode, ast: Node, upstream: Mapping[str, NodeResult]) -> tuple:
    refs = references(ast)
    series = {ref: to_series(upstream[ref], node.expression) for ref in refs}

    scalars = {ref: s.values[0] for ref, s in series.items() if s.scalar}
    keyed = {ref: s for ref, s in series.items() if not s.scalar}

    if not keyed:
        value = _eval_math(ast, scalars, node)
        return [VALUE_COLUMN], [{VALUE_COLUMN: value}]

    key_column = next((s.key_column for s in keyed.values() if s.key_column), None) or "index"
    maps = {ref: s.as_map() for ref, s in keyed.items()}

    all_keys: Dict[Any, Any] = {}
    for s in keyed.values():
        for k in s.keys:
            all_keys.setdefault(_hashable(k), k)

    rows = []
    for hk in sorted(all_keys, key=sort_key):
        env = dict(scalars)
        for ref, m in maps.items():
            env[ref] = m.get(hk)
        rows.append({key_column: all_keys[hk], VALUE_COLUMN: _eval_math(ast, env, node)})

    return [key_column, VALUE_COLUMN], rows


def _eval_math(ast: Node, env: Mapping[str, Any], node: DerivedNode) -> Any:
    if isinstance(ast, Number):
        value = ast.value
        return int(value) if value.is_integer() else value
    if isinstance(ast, Name):
        return env.get(ast.name)
    if isinstance(ast, UnaryOp):
        operand = _eval_math(ast.operand, env, node)
        return None if operand is None else -operand
    if isinstance(ast, BinaryOp):
        left = _eval_math(ast.left, env, node)
        right = _eval_math(ast.right, env, node)
        if left is None or right is None:
            return None
        if ast.op == "+":
            return left + right
        if ast.op == "-":
            return left - right
        if ast.op == "*":
            return left * right
        if right == 0:
            return None
        if ast.op == "/":
            return left / right
        return math.fmod(left, right)
    if isinstance(ast, Call):
        _, _, fn = MATH_FUNCTIONS[ast.func]
        args = [_eval_math(a, env, node) for a in ast.args]
        if ast.func != "coalesce" and any(a is None for a in args):
            return None
        return fn(*args)
    raise InvalidExpressionError(node.expression, f"Unsupported term {ast!r}", ref_id=node.ref_id)


def _evaluate_reduce(node: DerivedNode, ast: Node, upstream: Mapping[str, NodeResult]) -> tuple:
    def fail(message: str) -> InvalidExpressionError:
        return InvalidExpressionError(node.expression, message, ref_id=node.ref_id)

    func, ref, group = _reduce_parts(ast, fail)
    reducer = REDUCERS[func]
    source = upstream[ref]

    if group is None:
        series = to_series(source, node.expression)
        return [VALUE_COLUMN], [{VALUE_COLUMN: reducer(series.values)}]

    if group not in source.columns:
        raise fail(f"Group column '{group}' not found in result '{ref}'")

    series = to_series(source, node.expression, exclude=[group])
    groups: Dict[Any, List[Any]] = {}
    labels: Dict[Any, Any] = {}
    for row, value in zip(source.rows, series.values):
        label = row.get(group)
        hk = _hashable(label)
        labels.setdefault(hk, label)
        groups.setdefault(hk, []).append(value)

    rows = [{group: labels[hk], VALUE_COLUMN: reducer(values)} for hk, values in groups.items()]
    return [group, VALUE_COLUMN], rows


def _evaluate_resample(node: DerivedNode, ast: Node, upstream: Mapping[str, NodeResult]) -> tuple:
    def fail(message: str) -> InvalidExpressionError:
        return InvalidExpressionError(node.expression, message, ref_id=node.ref_id)

    ref, step, func = _resample_parts(ast, fail)
    reducer = REDUCERS[func]
    source = upstream[ref]
    series = to_series(source, node.expression)

    if series.key_column is None:
        raise fail(f"Result '{ref}' has no timestamp column to resample")

    buckets: Dict[int, List[Any]] = {}
    skipped = 0
    for key, value in zip(series.keys, series.values):
        if key is None:
            skipped += 1
            continue
        ts = coerce_timestamp(key)
        if ts is None:
            raise fail(f"Value {key!r} in column '{series.key_column}' is not a timestamp")
        start = math.floor((ts - _EPOCH).total_seconds() / step) * step
        buckets.setdefault(start, []).append(value)

    if skipped:
        logger.warning("resample %s: skipped %d rows with null timestamps", node.ref_id, skipped)

    if not buckets:
        return [series.key_column, VALUE_COLUMN], []

    if node.fill == "omit":
        starts = sorted(buckets)
    else:
        first, last = min(buckets), max(buckets)
        count = (last - first) // step + 1
        if count > MAX_RESAMPLE_BUCKETS:
            raise fail(f"resample would produce {count} buckets (limit {MAX_RESAMPLE_BUCKETS})")
        starts = [first + i * step for i in range(count)]

    rows = []
    for start in starts:
        values = buckets.get(start)
        rows.append(
            {
                series.key_column: _EPOCH + timedelta(seconds=start),
                VALUE_COLUMN: reducer(values) if values is not None else None,
            }
        )
    return [series.key_column, VALUE_COLUMN], rows
