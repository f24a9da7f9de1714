"""QueryEngine - the graphpipe orchestrator."""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from graphlib import TopologicalSorter
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from graphpipe.connections.resolver import ConnectionResolver, ResolvedConnection
from graphpipe.core.cancellation import CancellationToken
from graphpipe.core.dag import build_dependency_graph, execution_stages
from graphpipe.core.nodes import DerivedNode, QueryNode, SqlNode, parse_nodes
from graphpipe.core.parameters import validate_parameters
from graphpipe.core.plan import ExecutionPlan, ExecutionStep
from graphpipe.core.result import ExecutionResult, NodeResult
from graphpipe.core.timerange import Clock, TimeRangeResolver
from graphpipe.errors import ParameterIssue, QueryTimeoutError, ValidationError
from graphpipe.execution.dialects import Dialect
from graphpipe.execution.sql_executor import SqlExecutor
from graphpipe.expressions.evaluator import check_expression, evaluate
from graphpipe.parsing.compiler import compile_sql
from graphpipe.parsing.sql import MAX_QUERY_LENGTH, validate_read_only

logger = logging.getLogger(__name__)


@dataclass
class EngineOptions:
    """Execution limits; mapped from service settings by the caller."""

    max_parallel_nodes: int = 4
    statement_timeout_seconds: float = 30.0
    request_timeout_seconds: Optional[float] = 60.0
    max_rows: int = 1000
    max_query_length: int = MAX_QUERY_LENGTH


@dataclass
class ExecutionRequest:
    """
    One execution request: nodes, runtime values and a time selector.

    Attributes:
        nodes: SQL and derived nodes
        parameter_values: Untyped runtime values shared by every SQL node
        time_range: Named range, "custom", or None/"all" for unbounded
        time_from: Start bound for "custom"
        time_to: End bound for "custom"
        disable_time_range: Bind the unbounded window regardless of time_range
        data_source_ref: Default data source for SQL nodes without their own
    """

    nodes: List[QueryNode] = field(default_factory=list)
    parameter_values: Dict[str, Any] = field(default_factory=dict)
    time_range: Optional[str] = "7d"
    time_from: Any = None
    time_to: Any = None
    disable_time_range: bool = False
    data_source_ref: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ExecutionRequest:
        """
        Build a request from its JSON form.

        Accepts ``queries`` (list) or a single ``query``; ``timeRange`` may be
        a name or ``{"type"|"range": ..., "from": ..., "to": ...}``.
        """
        raw_nodes = data.get("queries")
        if raw_nodes is None and data.get("query") is not None:
            raw_nodes = [data["query"]]

        time_range = data.get("timeRange", "7d")
        time_from = data.get("from")
        time_to = data.get("to")
        if isinstance(time_range, Mapping):
            time_from = time_range.get("from", time_from)
            time_to = time_range.get("to", time_to)
            time_range = time_range.get("type", time_range.get("range", "custom"))

        values = data.get("parameterValues", data.get("parameters")) or {}
        return cls(
            nodes=parse_nodes(raw_nodes or []),
            parameter_values=dict(values),
            time_range=time_range,
            time_from=time_from,
            time_to=time_to,
            disable_time_range=bool(data.get("disableTimeRange", False)),
            data_source_ref=data.get("dataSourceRef") or data.get("connectorRef"),
        )


class QueryEngine:
    """
    Main graphpipe orchestrator.

    Key methods:
    - compile(): Validate a request into an ExecutionPlan (no database I/O)
    - execute(): Run a plan in dependency order
    - run(): compile + execute in one call

    Independent SQL nodes run concurrently on a bounded thread pool; derived
    nodes are evaluated on the calling thread as soon as their inputs exist.
    Any node failure cancels the request and no partial result is returned.

    Example:
        >>> engine = QueryEngine(resolver)
        >>> request = ExecutionRequest.from_dict({
        ...     "queries": [
        ...         {"refId": "A", "text": "SELECT day, total FROM sales"},
        ...         {"refId": "B", "operation": "reduce", "expression": "sum(A)"},
        ...     ],
        ...     "dataSourceRef": "warehouse",
        ... })
        >>> result = engine.run(request, workspace_id="ws-1")
    """

    def __init__(
        self,
        resolver: ConnectionResolver,
        *,
        options: Optional[EngineOptions] = None,
        dialects: Optional[Dict[str, Dialect]] = None,
        clock: Optional[Clock] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize QueryEngine.

        Args:
            resolver: Resolves data sources to pooled connections
            options: Execution limits
            dialects: Dialect registry override (tests use a no-op dialect)
            clock: Wall clock used to resolve time ranges
            monotonic: Clock used for request deadlines
        """
        self.resolver = resolver
        self.options = options or EngineOptions()
        self.time_ranges = TimeRangeResolver(clock)
        self.executor = SqlExecutor(
            dialects=dialects,
            statement_timeout_seconds=self.options.statement_timeout_seconds,
            max_rows=self.options.max_rows,
        )
        self._monotonic = monotonic

    # ─────────────────────────────────────────────────
    # Compile (Plan Generation)
    # ─────────────────────────────────────────────────

    def compile(self, request: ExecutionRequest) -> ExecutionPlan:
        """
        Validate a request and produce its execution plan.

        This does NOT touch any database. Every request-shape, parameter and
        SQL safety problem surfaces here.

        Args:
            request: The execution request

        Returns:
            ExecutionPlan with SQL steps compiled for named binding

        Raises:
            ValidationError: Missing nodes, parameter issues (all of them), or
                a SQL node without a data source
            DuplicateRefIdError / UnknownReferenceError / CyclicDependencyError
            InvalidExpressionError: A derived expression does not parse or fit
            UnsafeQueryError: A SQL node is not a single read-only query
            CompilationError: A placeholder is undeclared
            TimeRangeError: The time selector cannot be resolved
        """
        if not request.nodes:
            raise ValidationError.single("queries", "MissingParameter", "At least one query is required")

        graph = build_dependency_graph(request.nodes)
        stages = execution_stages(graph)
        for node in request.nodes:
            if isinstance(node, DerivedNode):
                check_expression(node)

        time_range = self.time_ranges.resolve(
            request.time_range,
            request.time_from,
            request.time_to,
            disabled=request.disable_time_range,
        )
        implicit = time_range.bind_params()

        stage_of = {ref_id: i for i, stage in enumerate(stages) for ref_id in stage}
        by_id = {node.ref_id: node for node in request.nodes}
        issues: List[ParameterIssue] = []
        steps: List[ExecutionStep] = []

        for ref_id in sorted(by_id):
            node = by_id[ref_id]
            step = ExecutionStep(node=node, stage=stage_of[ref_id], depends_on=list(graph[ref_id]))
            steps.append(step)
            if not isinstance(node, SqlNode):
                continue

            try:
                step.bound_params = validate_parameters(node.parameters, request.parameter_values)
            except ValidationError as e:
                issues.extend(i for i in e.issues if i not in issues)
                continue

            step.data_source_ref = node.data_source_ref or request.data_source_ref
            if not step.data_source_ref:
                issues.append(
                    ParameterIssue(
                        "dataSourceRef",
                        "MissingParameter",
                        f"Query '{ref_id}' has no data source and the request sets no default",
                    )
                )
                continue

            statement = validate_read_only(node.text, max_length=self.options.max_query_length)
            step.compiled = compile_sql(
                statement,
                [p.name for p in node.parameters],
                {**step.bound_params, **implicit},
                ref_id=ref_id,
            )

        if issues:
            raise ValidationError(issues)

        plan = ExecutionPlan(
            steps=steps,
            stages=stages,
            time_range=time_range,
            default_data_source_ref=request.data_source_ref,
        )
        logger.debug("%s", plan.summary())
        return plan

    # ─────────────────────────────────────────────────
    # Execute
    # ─────────────────────────────────────────────────

    def execute(
        self,
        plan: ExecutionPlan,
        workspace_id: str,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Execute a compiled plan.

        Args:
            plan: Plan from compile()
            workspace_id: Tenant whose data sources are used
            token: Cancellation/deadline signal; defaults to the request timeout

        Returns:
            ExecutionResult holding every node's result

        Raises:
            QueryTimeoutError: The request deadline passed
            RequestCancelledError: The token was cancelled by the caller
            Any node error, after in-flight statements are cancelled
        """
        if token is None:
            token = CancellationToken(self.options.request_timeout_seconds, clock=self._monotonic)

        run_id = str(uuid4())
        started = self._monotonic()
        logger.info("Run %s: executing %d nodes for workspace %s", run_id, len(plan.steps), workspace_id)

        sorter = TopologicalSorter(plan.dependency_graph())
        sorter.prepare()
        results: Dict[str, NodeResult] = {}
        connections: Dict[str, ResolvedConnection] = {}
        pending: Dict[Future, str] = {}
        pool = ThreadPoolExecutor(
            max_workers=max(1, self.options.max_parallel_nodes),
            thread_name_prefix="graphpipe",
        )

        try:
            while sorter.is_active():
                token.raise_if_cancelled()
                ran_inline = False

                for ref_id in sorted(sorter.get_ready()):
                    step = plan.get_step(ref_id)
                    if isinstance(step.node, DerivedNode):
                        results[ref_id] = self._evaluate(step, results)
                        sorter.done(ref_id)
                        ran_inline = True
                        continue

                    connection = connections.get(step.data_source_ref)
                    if connection is None:
                        connection = self.resolver.resolve(step.data_source_ref, workspace_id)
                        connections[step.data_source_ref] = connection
                    future = pool.submit(self.executor.execute, step.node, step.compiled, connection, token)
                    pending[future] = ref_id

                if ran_inline:
                    continue

                done, _ = wait(list(pending), timeout=token.remaining(), return_when=FIRST_COMPLETED)
                if not done:
                    running = sorted(pending.values())
                    token.cancel("deadline exceeded")
                    raise QueryTimeoutError(running[0], self.options.request_timeout_seconds)

                for future in sorted(done, key=pending.get):
                    ref_id = pending.pop(future)
                    results[ref_id] = future.result()
                    sorter.done(ref_id)

        except Exception as e:
            token.cancel(f"node failed: {type(e).__name__}")
            for future in pending:
                future.cancel()
            logger.warning("Run %s aborted: %s", run_id, e)
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        duration_ms = int((self._monotonic() - started) * 1000)
        logger.info("Run %s finished in %dms", run_id, duration_ms)
        return ExecutionResult(plan=plan, results=results, run_id=run_id, duration_ms=duration_ms)

    def _evaluate(self, step: ExecutionStep, results: Dict[str, NodeResult]) -> NodeResult:
        started = self._monotonic()
        result = evaluate(step.node, results)
        result.duration_ms = int((self._monotonic() - started) * 1000)
        logger.debug("Node %s (%s) produced %d rows", step.ref_id, step.node.operation, result.row_count)
        return result

    # ─────────────────────────────────────────────────
    # Convenience: run = compile + execute
    # ─────────────────────────────────────────────────

    def run(
        self,
        request: ExecutionRequest,
        workspace_id: str,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionResult:
        """
        Compile and execute in one call.

        Equivalent to: execute(compile(request), workspace_id, token)
        """
        plan = self.compile(request)
        return self.execute(plan, workspace_id, token)
