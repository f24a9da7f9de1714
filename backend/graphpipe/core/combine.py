"""Flatten a multi-node result into the single table used by charts."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from graphpipe.core.parameters import coerce_timestamp
from graphpipe.core.result import ExecutionResult, NodeResult


def display_name(ref_id: str, column: str, name: Optional[str], total_columns: int) -> str:
    """
    Output name for a value column.

    Wide results keep their own column names; a key/value pair takes the
    node name when it has one; anything else is prefixed with the refId.
    """
    if total_columns > 2:
        return column
    if name and total_columns == 2:
        return name
    return f"{ref_id}_{column}"


def combine_results(result: ExecutionResult) -> NodeResult:
    """
    Merge visible node results on their first column.

    Hidden nodes are skipped. Keys missing from a node yield nulls for that
    node's columns. Keys are ordered chronologically when they all parse as
    timestamps, otherwise by their string form.

    Returns:
        NodeResult with ref_id "combined"
    """
    visible = result.visible()
    if not visible:
        return NodeResult(ref_id="combined")

    first = next(iter(visible.values()))
    if not first.columns:
        return NodeResult(ref_id="combined", columns=list(first.columns), rows=list(first.rows))

    key_column = first.columns[0]
    names = {ref_id: result.plan.get_step(ref_id).node.name for ref_id in visible}

    if len(visible) == 1:
        ref_id, only = next(iter(visible.items()))
        mapping = _column_mapping(ref_id, only, names[ref_id])
        columns = [only.columns[0]] + [mapping[c] for c in only.columns[1:]]
        rows = []
        for row in only.rows:
            out = {only.columns[0]: row.get(only.columns[0])}
            for c in only.columns[1:]:
                out[mapping[c]] = row.get(c)
            rows.append(out)
        return NodeResult(ref_id="combined", columns=columns, rows=rows)

    columns: List[str] = [key_column]
    merged: Dict[str, Dict[str, Any]] = {}
    originals: Dict[str, Any] = {}

    for ref_id, node_result in visible.items():
        if not node_result.columns:
            continue
        own_key = node_result.columns[0]
        mapping = _column_mapping(ref_id, node_result, names[ref_id])
        for c in node_result.columns[1:]:
            if mapping[c] not in columns:
                columns.append(mapping[c])

        for row in node_result.rows:
            raw_key = row.get(own_key)
            k = _key_text(raw_key)
            originals.setdefault(k, raw_key)
            target = merged.setdefault(k, {})
            for c in node_result.columns[1:]:
                target[mapping[c]] = row.get(c)

    ordered = _sort_keys(list(merged), originals)
    rows = []
    for k in ordered:
        values = merged[k]
        out = {key_column: originals[k]}
        for c in columns[1:]:
            out[c] = values.get(c)
        rows.append(out)

    return NodeResult(ref_id="combined", columns=columns, rows=rows)


def _column_mapping(ref_id: str, node_result: NodeResult, name: Optional[str]) -> Dict[str, str]:
    total = len(node_result.columns)
    return {c: display_name(ref_id, c, name, total) for c in node_result.columns[1:]}


def _key_text(value: Any) -> str:
    if value is None:
        return ""
    ts = coerce_timestamp(value) if not isinstance(value, (int, float)) else None
    if ts is not None:
        return ts.isoformat()
    return str(value)


def _sort_keys(keys: List[str], originals: Dict[str, Any]) -> List[str]:
    stamps = {}
    for k in keys:
        raw = originals[k]
        ts = coerce_timestamp(raw) if raw is not None and not isinstance(raw, (int, float)) else None
        if ts is None:
            return sorted(keys)
        stamps[k] = ts
    return sorted(keys, key=lambda k: stamps[k])
