"""Execution plan models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from graphpipe.core.nodes import QueryNode
from graphpipe.core.timerange import ResolvedTimeRange
from graphpipe.parsing.compiler import CompiledQuery


@dataclass
class ExecutionStep:
    """
    A single node in an execution plan.

    SQL steps carry their validated parameters and compiled statement;
    derived steps carry the refIds they wait on.
    """

    node: QueryNode
    stage: int
    depends_on: List[str] = field(default_factory=list)
    bound_params: Dict[str, Any] = field(default_factory=dict)
    data_source_ref: Optional[str] = None
    compiled: Optional[CompiledQuery] = None

    @property
    def ref_id(self) -> str:
        return self.node.ref_id

    @property
    def kind(self) -> str:
        return self.node.kind

    def __repr__(self) -> str:
        return f"ExecutionStep({self.ref_id}, {self.kind}, stage={self.stage})"


@dataclass
class ExecutionPlan:
    """
    Validated, ordered plan for one execution request.

    ``stages`` groups refIds whose dependencies are satisfied by earlier
    stages; nodes within a stage are independent and listed in refId order.
    """

    steps: List[ExecutionStep] = field(default_factory=list)
    stages: List[List[str]] = field(default_factory=list)
    time_range: Optional[ResolvedTimeRange] = None
    default_data_source_ref: Optional[str] = None

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def order(self) -> List[str]:
        """Flat topological order."""
        return [ref for stage in self.stages for ref in stage]

    def get_step(self, ref_id: str) -> ExecutionStep:
        for step in self.steps:
            if step.ref_id == ref_id:
                return step
        raise KeyError(ref_id)

    def dependency_graph(self) -> Dict[str, List[str]]:
        return {s.ref_id: list(s.depends_on) for s in self.steps}

    def summary(self) -> str:
        """
        Generate a human-readable summary for logs.

        Returns:
            Multi-line string describing stages and time window
        """
        lines = ["Execution Plan:"]
        for i, stage in enumerate(self.stages, 1):
            parts = []
            for ref_id in stage:
                step = self.get_step(ref_id)
                deps = f" <- {','.join(step.depends_on)}" if step.depends_on else ""
                parts.append(f"{ref_id}[{step.kind}]{deps}")
            lines.append(f"  stage {i}: {'  '.join(parts)}")

        if self.time_range is not None:
            lines.append("")
            lines.append(f"Time range: {self.time_range}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"ExecutionPlan({len(self.steps)} nodes, {len(self.stages)} stages)"
