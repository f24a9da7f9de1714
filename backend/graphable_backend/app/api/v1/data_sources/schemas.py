"""Schemas for data source endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from graphable_backend.app.api.v1.graphs.schemas import CamelModel


class TestConnectionRequest(CamelModel):
    """Credentials to try before they are stored."""

    connection_string: Optional[str] = Field(default=None, alias="connectionString")
    connection: Optional[Dict[str, Any]] = None
    timeout_seconds: Optional[float] = Field(default=None, alias="timeoutSeconds", gt=0, le=60)

    @model_validator(mode="after")
    def _require_credentials(self) -> TestConnectionRequest:
        if not self.connection_string and not self.connection:
            raise ValueError("Either 'connectionString' or 'connection' is required")
        return self


class TestConnectionResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    responseTimeMs: Optional[int] = None


class ExploreRequest(CamelModel):
    query: str = Field(..., min_length=1)
    page: int = Field(default=1, ge=1)
    page_size: Optional[int] = Field(default=None, alias="pageSize", ge=1)


class PageResponse(BaseModel):
    rows: List[Dict[str, Any]]
    columns: List[str]
    totalCount: int
    page: int
    pageSize: int
    totalPages: int


class TableInfo(BaseModel):
    schema_name: str = Field(..., alias="schema")
    name: str
    type: str

    model_config = {"populate_by_name": True}


class ColumnInfo(BaseModel):
    name: str
    type: str
    nullable: bool
    default: Optional[str] = None


class TableDescription(BaseModel):
    schema_name: Optional[str] = Field(default=None, alias="schema")
    name: str
    columns: List[ColumnInfo]

    model_config = {"populate_by_name": True}


class SampleRowsResponse(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]
    limit: int
