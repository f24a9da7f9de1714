"""Execution result models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from graphpipe.core.plan import ExecutionPlan


@dataclass
class NodeResult:
    """
    Tabular output of one node.

    Rows are dicts keyed by column name, ordered as produced by the engine;
    ``columns`` preserves SELECT-list order.
    """

    ref_id: str
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    duration_ms: Optional[int] = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {"columns": list(self.columns), "data": list(self.rows)}
        if self.truncated:
            result["truncated"] = True
        return result

    def __repr__(self) -> str:
        duration = f", {self.duration_ms}ms" if self.duration_ms is not None else ""
        return f"NodeResult({self.ref_id}, {len(self.columns)} cols, {self.row_count} rows{duration})"


@dataclass
class ExecutionResult:
    """
    Complete result of one execution request.

    Only produced when every node succeeded; a failing node aborts the
    request instead of yielding a partial result.
    """

    plan: ExecutionPlan
    results: Dict[str, NodeResult] = field(default_factory=dict)
    run_id: Optional[str] = None
    duration_ms: Optional[int] = None

    def __getitem__(self, ref_id: str) -> NodeResult:
        return self.results[ref_id]

    def visible(self) -> Dict[str, NodeResult]:
        """Results of nodes not marked hidden, in refId order."""
        out: Dict[str, NodeResult] = {}
        for ref_id in sorted(self.results):
            if not self.plan.get_step(ref_id).node.hidden:
                out[ref_id] = self.results[ref_id]
        return out

    def to_dict(self, include_hidden: bool = False) -> dict:
        source = self.results if include_hidden else self.visible()
        return {ref_id: source[ref_id].to_dict() for ref_id in sorted(source)}

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [f"Execution Result: {len(self.results)} nodes"]
        for ref_id in self.plan.order:
            r = self.results.get(ref_id)
            if r is not None:
                lines.append(f"  - {ref_id}: {r.row_count} rows ({r.duration_ms or 0}ms)")
        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms}ms")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ExecutionResult({len(self.results)} nodes, run_id={self.run_id})"
