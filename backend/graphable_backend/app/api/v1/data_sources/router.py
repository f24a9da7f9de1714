"""Data source endpoints: connection tests and the explorer."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query

from graphable_backend.app.api.deps import get_workspace_id
from graphable_backend.app.services.data_sources import DataSourceService, get_data_source_service

from .schemas import (
    ExploreRequest,
    PageResponse,
    SampleRowsResponse,
    TableDescription,
    TableInfo,
    TestConnectionRequest,
    TestConnectionResponse,
)

router = APIRouter(prefix="/data-sources", tags=["data-sources"])


# ========== Helper Functions ==========


def get_service() -> DataSourceService:
    """Get service dependency."""

    return get_data_source_service()


# ========== Connection Tests ==========


@router.post("/test-connection", response_model=TestConnectionResponse, response_model_exclude_none=True)
def test_connection(
    payload: TestConnectionRequest,
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> dict:
    """Open a connection with unsaved credentials and run ``SELECT 1``."""

    result = service.test_connection(payload.connection or payload.connection_string, payload.timeout_seconds)
    return result.to_dict()


@router.post("/{data_source_id}/test", response_model=TestConnectionResponse, response_model_exclude_none=True)
def test_data_source(
    data_source_id: str,
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> dict:
    """Run the connection test with the stored credentials."""

    return service.test_data_source(data_source_id, workspace_id).to_dict()


# ========== Explorer ==========


@router.post("/{data_source_id}/explore", response_model=PageResponse)
def explore(
    data_source_id: str,
    payload: ExploreRequest,
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> dict:
    """Run one page of a read-only query."""

    result = service.explore(data_source_id, workspace_id, payload.query, payload.page, payload.page_size)
    return result.to_dict()


@router.get("/{data_source_id}/tables", response_model=List[TableInfo], response_model_by_alias=True)
def list_tables(
    data_source_id: str,
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> list:
    """List tables and views outside system schemas."""

    return service.list_tables(data_source_id, workspace_id)


@router.get("/{data_source_id}/tables/{table}", response_model=TableDescription, response_model_by_alias=True)
def describe_table(
    data_source_id: str,
    table: str,
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> dict:
    """Describe a table's columns."""

    return service.describe_table(data_source_id, workspace_id, table)


@router.get("/{data_source_id}/tables/{table}/sample", response_model=SampleRowsResponse)
def sample_rows(
    data_source_id: str,
    table: str,
    limit: int = Query(10, ge=1, le=1000),
    workspace_id: str = Depends(get_workspace_id),
    service: DataSourceService = Depends(get_service),
) -> dict:
    """First rows of a table; the limit is capped by the explorer settings."""

    return service.sample_rows(data_source_id, workspace_id, table, limit)
