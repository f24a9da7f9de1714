"""Graph preview and execution endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from graphable_backend.app.api.deps import get_access_token, get_workspace_id
from graphable_backend.app.services.execution import GraphExecutionService, get_execution_service

from .schemas import ExecuteGraphRequest, GraphResultResponse, PreviewRequest, time_range_payload

router = APIRouter(prefix="/graphs", tags=["graphs"])


# ========== Helper Functions ==========


def get_service() -> GraphExecutionService:
    """Get service dependency."""

    return get_execution_service()


# ========== Graph Endpoints ==========


@router.post("/preview", response_model=GraphResultResponse, response_model_exclude_none=True)
def preview_graph(
    payload: PreviewRequest,
    workspace_id: str = Depends(get_workspace_id),
    service: GraphExecutionService = Depends(get_service),
) -> dict:
    """Evaluate unsaved queries and return the flattened table."""

    return service.preview(workspace_id, payload.to_engine_payload(), include_nodes=payload.include_nodes)


@router.post("/{graph_id}/execute", response_model=GraphResultResponse, response_model_exclude_none=True)
def execute_graph(
    graph_id: str,
    payload: ExecuteGraphRequest,
    workspace_id: str = Depends(get_workspace_id),
    access_token: str = Depends(get_access_token),
    service: GraphExecutionService = Depends(get_service),
) -> dict:
    """Execute a saved graph with runtime parameters."""

    return service.execute_graph(
        workspace_id,
        graph_id,
        payload.parameters,
        access_token,
        time_range=time_range_payload(payload.time_range),
        include_nodes=payload.include_nodes,
    )
