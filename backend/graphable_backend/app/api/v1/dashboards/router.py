"""Dashboard rendering endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from graphable_backend.app.api.deps import get_access_token, get_workspace_id
from graphable_backend.app.api.v1.graphs.schemas import time_range_payload
from graphable_backend.app.services.execution import GraphExecutionService, get_execution_service

from .schemas import RenderDashboardRequest, RenderDashboardResponse

router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def get_service() -> GraphExecutionService:
    """Get service dependency."""

    return get_execution_service()


@router.post("/render", response_model=RenderDashboardResponse, response_model_exclude_none=True)
def render_dashboard(
    payload: RenderDashboardRequest,
    workspace_id: str = Depends(get_workspace_id),
    access_token: str = Depends(get_access_token),
    service: GraphExecutionService = Depends(get_service),
) -> dict:
    """Render every tile; failing tiles carry an ``error`` instead of data."""

    tiles = [
        {
            "tileId": tile.tile_id,
            "graphId": tile.graph_id,
            "parameters": tile.parameters,
            "timeRange": time_range_payload(tile.time_range),
        }
        for tile in payload.tiles
    ]
    return service.render_dashboard(
        workspace_id,
        tiles,
        payload.parameters,
        access_token,
        time_range=time_range_payload(payload.time_range),
    )
