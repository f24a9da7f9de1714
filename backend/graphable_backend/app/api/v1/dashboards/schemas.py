"""Schemas for dashboard rendering."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from graphable_backend.app.api.v1.graphs.schemas import CamelModel, TimeRangeInput


class DashboardTile(CamelModel):
    tile_id: Optional[str] = Field(default=None, alias="tileId")
    graph_id: str = Field(..., alias="graphId", min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    time_range: TimeRangeInput = Field(default=None, alias="timeRange")


class RenderDashboardRequest(CamelModel):
    """Tiles to render with dashboard-wide parameters."""

    tiles: List[DashboardTile] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    time_range: TimeRangeInput = Field(default=None, alias="timeRange")


class TileResult(BaseModel):
    tileId: str
    graphId: str
    columns: Optional[List[str]] = None
    data: Optional[List[Dict[str, Any]]] = None
    truncated: Optional[bool] = None
    error: Optional[Dict[str, Any]] = None


class RenderDashboardResponse(BaseModel):
    tiles: List[TileResult]
