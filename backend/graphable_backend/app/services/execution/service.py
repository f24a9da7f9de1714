"""Graph execution service - preview, saved graphs and dashboards.

This service wraps the graphpipe QueryEngine to provide:
1. Ad-hoc preview of unsaved queries
2. Execution of saved graphs with their parameter schema
3. Dashboard rendering where each tile is its own request
4. Audit events through the event pathway (fire and forget)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional

from graphpipe import (
    ExecutionRequest,
    ExecutionResult,
    GraphpipeError,
    QueryEngine,
    SqlNode,
    combine_results,
    validate_parameters,
)
from graphpipe.core.parameters import parse_parameter_defs

from graphable_backend.app.core.config import get_settings
from graphable_backend.app.services.data_sources import get_connection_resolver
from graphable_backend.app.services.events import (
    GRAPH_EXECUTED,
    GRAPH_FLOW,
    GRAPH_PREVIEWED,
    EventPathway,
    emit,
    get_event_pathway,
)
from graphable_backend.app.services.graphs import (
    GraphDefinition,
    GraphNotFoundError,
    GraphStore,
    get_graph_store,
)

logger = logging.getLogger(__name__)


def shape_result(result: ExecutionResult, include_nodes: bool = False) -> Dict[str, Any]:
    """
    Build the ``{data, columns}`` response for an execution.

    A request with a single SQL node and nothing else returns that node's
    rows unchanged; otherwise visible nodes are flattened on their first
    column.
    """
    steps = result.plan.steps
    if len(steps) == 1 and isinstance(steps[0].node, SqlNode):
        body = result.results[steps[0].ref_id].to_dict()
    else:
        body = combine_results(result).to_dict()

    if include_nodes:
        body["results"] = result.to_dict()
    return body


class GraphExecutionService:
    """Runs graphs through the query engine and reports audit events."""

    def __init__(
        self,
        engine: QueryEngine,
        graphs: GraphStore,
        pathway: EventPathway,
        max_parallel_tiles: int = 4,
    ) -> None:
        self.engine = engine
        self.graphs = graphs
        self.pathway = pathway
        self.max_parallel_tiles = max_parallel_tiles

    # ─────────────────────────────────────────────────
    # Preview
    # ─────────────────────────────────────────────────

    def preview(self, workspace_id: str, payload: Mapping[str, Any], include_nodes: bool = False) -> Dict[str, Any]:
        """
        Evaluate unsaved queries.

        Args:
            workspace_id: Caller's workspace
            payload: ``{queries | query, parameterValues, dataSourceRef?, connectorRef?, timeRange}``
            include_nodes: Also return every visible node's own result

        Returns:
            ``{data, columns}`` (plus ``results`` when requested)
        """
        request = ExecutionRequest.from_dict(payload)
        if request.data_source_ref is None:
            request.data_source_ref = next(
                (n.data_source_ref for n in request.nodes if isinstance(n, SqlNode) and n.data_source_ref),
                None,
            )

        result = self.engine.run(request, workspace_id)
        emit(self.pathway, GRAPH_FLOW, GRAPH_PREVIEWED, _event_payload(workspace_id, result))
        return shape_result(result, include_nodes)

    # ─────────────────────────────────────────────────
    # Saved graphs
    # ─────────────────────────────────────────────────

    def execute_graph(
        self,
        workspace_id: str,
        graph_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
        access_token: Optional[str] = None,
        time_range: Optional[Any] = None,
        include_nodes: bool = False,
    ) -> Dict[str, Any]:
        """
        Execute a saved graph.

        Parameters are validated against the graph's schema first, and
        schema defaults fill the values the caller omitted.

        Raises:
            GraphNotFoundError: Unknown graph
            GraphpipeError: Validation or execution failure
        """
        graph = self.graphs.get(workspace_id, graph_id, access_token)
        request = self._graph_request(graph, parameters or {}, time_range)

        result = self.engine.run(request, workspace_id)
        payload = _event_payload(workspace_id, result)
        payload["graphId"] = graph_id
        emit(self.pathway, GRAPH_FLOW, GRAPH_EXECUTED, payload)
        return shape_result(result, include_nodes)

    def _graph_request(
        self,
        graph: GraphDefinition,
        parameters: Mapping[str, Any],
        time_range: Optional[Any],
    ) -> ExecutionRequest:
        definitions = parse_parameter_defs(graph.parameter_schema)
        validate_parameters(definitions, parameters)

        values = dict(parameters)
        for d in definitions:
            if values.get(d.name) is None and d.default is not None:
                values[d.name] = d.default

        return ExecutionRequest.from_dict(
            {
                "queries": graph.node_payloads(),
                "parameterValues": values,
                "timeRange": time_range or graph.time_range or "7d",
                "disableTimeRange": graph.disable_time_range,
                "dataSourceRef": graph.data_source_ref,
            }
        )

    # ─────────────────────────────────────────────────
    # Dashboards
    # ─────────────────────────────────────────────────

    def render_dashboard(
        self,
        workspace_id: str,
        tiles: List[Mapping[str, Any]],
        parameters: Optional[Mapping[str, Any]] = None,
        access_token: Optional[str] = None,
        time_range: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """
        Execute every tile's graph.

        Global parameters are merged under each tile's overrides. Tiles run
        concurrently on a bounded pool; a failing tile reports its error while
        the other tiles still render. Output keeps the request's tile order.
        """
        if not tiles:
            return {"tiles": []}

        def render(index: int, tile: Mapping[str, Any]) -> Dict[str, Any]:
            graph_id = tile["graphId"]
            entry: Dict[str, Any] = {"tileId": tile.get("tileId") or str(index), "graphId": graph_id}
            values = {**(parameters or {}), **(tile.get("parameters") or {})}
            try:
                entry.update(
                    self.execute_graph(
                        workspace_id,
                        graph_id,
                        values,
                        access_token,
                        tile.get("timeRange") or time_range,
                    )
                )
            except (GraphpipeError, GraphNotFoundError) as e:
                logger.info("Tile %s (graph %s) failed: %s", entry["tileId"], graph_id, e)
                entry["error"] = e.to_dict()
            return entry

        workers = max(1, min(self.max_parallel_tiles, len(tiles)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dashboard") as pool:
            futures = [pool.submit(render, index, tile) for index, tile in enumerate(tiles)]
            return {"tiles": [future.result() for future in futures]}


def _event_payload(workspace_id: str, result: ExecutionResult) -> Dict[str, Any]:
    return {
        "workspaceId": workspace_id,
        "runId": result.run_id,
        "durationMs": result.duration_ms,
        "nodes": {ref_id: r.row_count for ref_id, r in sorted(result.results.items())},
        "timeRange": result.plan.time_range.to_dict() if result.plan.time_range else None,
    }


@lru_cache(maxsize=1)
def get_execution_service() -> GraphExecutionService:
    """Get singleton graph execution service instance."""
    settings = get_settings()
    engine = QueryEngine(
        get_connection_resolver(),
        options=settings.engine.to_options(settings.explorer.max_query_length),
    )
    return GraphExecutionService(
        engine,
        get_graph_store(),
        get_event_pathway(),
        max_parallel_tiles=settings.engine.max_parallel_tiles,
    )
