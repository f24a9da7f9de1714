"""Dependency graph construction and ordering for query nodes."""

from __future__ import annotations

from graphlib import CycleError, TopologicalSorter
from typing import Dict, List, Optional, Sequence

from graphpipe.core.nodes import QueryNode
from graphpipe.errors import CyclicDependencyError, DuplicateRefIdError, UnknownReferenceError

_WHITE, _GREY, _BLACK = 0, 1, 2


def build_dependency_graph(nodes: Sequence[QueryNode]) -> Dict[str, List[str]]:
    """
    Build refId -> [dependency refIds] and verify it is a DAG.

    Checks run in order: duplicate refIds, dangling references, cycles.

    Raises:
        DuplicateRefIdError: Two nodes share a refId
        UnknownReferenceError: An expression names an absent refId
        CyclicDependencyError: Dependencies form a cycle
    """
    by_id: Dict[str, QueryNode] = {}
    for node in nodes:
        if node.ref_id in by_id:
            raise DuplicateRefIdError(node.ref_id)
        by_id[node.ref_id] = node

    graph: Dict[str, List[str]] = {}
    for ref_id in sorted(by_id):
        deps = by_id[ref_id].dependencies
        for dep in deps:
            if dep not in by_id:
                raise UnknownReferenceError(ref_id, dep)
        graph[ref_id] = sorted(deps)

    cycle = find_cycle(graph)
    if cycle:
        raise CyclicDependencyError(cycle)

    return graph


def find_cycle(graph: Dict[str, List[str]]) -> Optional[List[str]]:
    """
    Depth-first search with white/grey/black marking.

    Returns:
        The cycle as a path that starts and ends on the same refId, or None
    """
    color = {ref_id: _WHITE for ref_id in graph}
    stack: List[str] = []

    def visit(ref_id: str) -> Optional[List[str]]:
        color[ref_id] = _GREY
        stack.append(ref_id)
        for dep in graph.get(ref_id, []):
            state = color.get(dep, _BLACK)
            if state == _GREY:
                return stack[stack.index(dep) :] + [dep]
            if state == _WHITE:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[ref_id] = _BLACK
        return None

    for ref_id in sorted(graph):
        if color[ref_id] == _WHITE:
            found = visit(ref_id)
            if found:
                return found
    return None


def execution_stages(graph: Dict[str, List[str]]) -> List[List[str]]:
    """
    Group refIds into stages whose members only depend on earlier stages.

    Members of a stage are in refId lexical order.
    """
    sorter = TopologicalSorter(graph)
    try:
        sorter.prepare()
    except CycleError as e:
        raise CyclicDependencyError(list(e.args[1])) from e

    stages: List[List[str]] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready())
        stages.append(ready)
        sorter.done(*ready)
    return stages
