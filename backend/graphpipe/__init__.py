"""
graphpipe: Graph Query Execution Engine

A read-only query engine for user-registered PostgreSQL data sources that provides:
- Typed query parameters with aggregated validation errors
- Multi-node requests (SQL and derived math/reduce/resample) ordered as a DAG
- Time ranges bound as ``__timeFrom`` / ``__timeTo`` parameters
- Secret-backed connection resolution with per-workspace pools
- Plan-before-execute with concurrent SQL nodes and request cancellation
"""

from graphpipe.core.parameters import ParameterDef, ParameterType, validate_parameters
from graphpipe.core.nodes import DerivedNode, QueryNode, SqlNode, parse_nodes
from graphpipe.core.timerange import ResolvedTimeRange, TimeRangeResolver
from graphpipe.core.plan import ExecutionPlan, ExecutionStep
from graphpipe.core.result import ExecutionResult, NodeResult
from graphpipe.core.cancellation import CancellationToken
from graphpipe.core.combine import combine_results
from graphpipe.core.engine import EngineOptions, ExecutionRequest, QueryEngine
from graphpipe.connections.cache import SecretCache
from graphpipe.connections.config import ConnectionConfig
from graphpipe.connections.resolver import ConnectionResolver, ConnectionTestResult, PoolOptions
from graphpipe.connections.secrets import EnvSecretStore, InMemorySecretStore, SecretReference, SecretStore
from graphpipe.execution.explorer import Explorer
from graphpipe.execution.pagination import PageResult, paginate
from graphpipe.storage.base import SecretReferenceStore
from graphpipe.storage.file_store import FileSecretReferenceStore
from graphpipe.storage.memory_store import InMemorySecretReferenceStore
from graphpipe.errors import (
    GraphpipeError,
    ValidationError,
    ParameterIssue,
    CyclicDependencyError,
    UnknownReferenceError,
    DuplicateRefIdError,
    SecretNotFoundError,
    ConnectionFailedError,
    PoolExhaustedError,
    QueryTimeoutError,
    QueryExecutionError,
    InvalidExpressionError,
    UpstreamMissingError,
)

__version__ = "0.1.0"

__all__ = [
    # Core models
    "ParameterDef",
    "ParameterType",
    "validate_parameters",
    "SqlNode",
    "DerivedNode",
    "QueryNode",
    "parse_nodes",
    "ResolvedTimeRange",
    "TimeRangeResolver",
    "ExecutionPlan",
    "ExecutionStep",
    "ExecutionResult",
    "NodeResult",
    "CancellationToken",
    "combine_results",
    # Engine
    "QueryEngine",
    "ExecutionRequest",
    "EngineOptions",
    # Connections
    "ConnectionConfig",
    "ConnectionResolver",
    "ConnectionTestResult",
    "PoolOptions",
    "SecretCache",
    "SecretReference",
    "SecretStore",
    "InMemorySecretStore",
    "EnvSecretStore",
    # Explorer
    "Explorer",
    "PageResult",
    "paginate",
    # Storage
    "SecretReferenceStore",
    "FileSecretReferenceStore",
    "InMemorySecretReferenceStore",
    # Errors
    "GraphpipeError",
    "ValidationError",
    "ParameterIssue",
    "CyclicDependencyError",
    "UnknownReferenceError",
    "DuplicateRefIdError",
    "SecretNotFoundError",
    "ConnectionFailedError",
    "PoolExhaustedError",
    "QueryTimeoutError",
    "QueryExecutionError",
    "InvalidExpressionError",
    "UpstreamMissingError",
]
