"""Schemas for graph preview and execution endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class CamelModel(BaseModel):
    """Accepts both camelCase aliases and field names."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ParameterDefinition(CamelModel):
    name: str = Field(..., min_length=1)
    type: str
    required: bool = False
    default: Any = None
    enum_values: Optional[List[Any]] = Field(default=None, alias="enumValues")
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    description: Optional[str] = None


class SqlQuery(CamelModel):
    """A SQL node."""

    ref_id: str = Field(default="A", alias="refId", pattern=r"^[A-Z]$")
    dialect: Literal["sql"] = "sql"
    text: str = Field(..., min_length=1)
    data_source_ref: Optional[str] = Field(default=None, alias="dataSourceRef")
    parameters: List[ParameterDefinition] = Field(default_factory=list)
    name: Optional[str] = None
    hidden: bool = False


class DerivedQuery(CamelModel):
    """A math/reduce/resample node."""

    ref_id: str = Field(..., alias="refId", pattern=r"^[A-Z]$")
    operation: Literal["math", "reduce", "resample"]
    expression: str = Field(..., min_length=1)
    name: Optional[str] = None
    hidden: bool = False
    fill: Literal["null", "omit"] = "null"


class TimeRangeSelection(CamelModel):
    type: str = "custom"
    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None


TimeRangeInput = Optional[Union[str, TimeRangeSelection]]


def time_range_payload(value: TimeRangeInput) -> Any:
    if isinstance(value, TimeRangeSelection):
        return value.to_payload()
    return value


class PreviewRequest(CamelModel):
    """Ad-hoc evaluation of unsaved queries."""

    queries: Optional[List[Union[SqlQuery, DerivedQuery]]] = None
    query: Optional[SqlQuery] = None
    parameter_values: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("parameterValues", "parameters", "parameter_values"),
    )
    data_source_ref: Optional[str] = Field(default=None, alias="dataSourceRef")
    connector_ref: Optional[str] = Field(default=None, alias="connectorRef")
    time_range: TimeRangeInput = Field(default="7d", alias="timeRange")
    disable_time_range: bool = Field(default=False, alias="disableTimeRange")
    include_nodes: bool = Field(default=False, alias="includeNodes")

    @model_validator(mode="after")
    def _require_queries(self) -> PreviewRequest:
        if not self.queries and self.query is None:
            raise ValueError("Either 'queries' or 'query' is required")
        return self

    def to_engine_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "parameterValues": self.parameter_values,
            "timeRange": time_range_payload(self.time_range),
            "disableTimeRange": self.disable_time_range,
            "dataSourceRef": self.data_source_ref or self.connector_ref,
        }
        if self.queries:
            payload["queries"] = [q.to_payload() for q in self.queries]
        else:
            payload["query"] = self.query.to_payload()
        return payload


class ExecuteGraphRequest(CamelModel):
    parameters: Dict[str, Any] = Field(default_factory=dict)
    time_range: TimeRangeInput = Field(default=None, alias="timeRange")
    include_nodes: bool = Field(default=False, alias="includeNodes")


class NodeResultResponse(BaseModel):
    columns: List[str]
    data: List[Dict[str, Any]]
    truncated: Optional[bool] = None


class GraphResultResponse(NodeResultResponse):
    """Flattened result, plus per-node results when requested."""

    results: Optional[Dict[str, NodeResultResponse]] = None
