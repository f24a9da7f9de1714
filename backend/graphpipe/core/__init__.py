"""Core graphpipe models and the query engine."""

from graphpipe.core.parameters import ParameterDef, ParameterType, validate_parameters
from graphpipe.core.nodes import DerivedNode, QueryNode, SqlNode
from graphpipe.core.timerange import ResolvedTimeRange, TimeRangeResolver
from graphpipe.core.plan import ExecutionPlan, ExecutionStep
from graphpipe.core.result import ExecutionResult, NodeResult
from graphpipe.core.engine import EngineOptions, ExecutionRequest, QueryEngine

__all__ = [
    "ParameterDef",
    "ParameterType",
    "validate_parameters",
    "SqlNode",
    "DerivedNode",
    "QueryNode",
    "ResolvedTimeRange",
    "TimeRangeResolver",
    "ExecutionPlan",
    "ExecutionStep",
    "ExecutionResult",
    "NodeResult",
    "EngineOptions",
    "ExecutionRequest",
    "QueryEngine",
]
