"""Tests for QueryEngine compile and execute against SQLite."""

import threading
import time
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from graphpipe.connections.resolver import ConnectionResolver
from graphpipe.core.cancellation import CancellationToken
from graphpipe.core.engine import EngineOptions, ExecutionRequest, QueryEngine
from graphpipe.core.result import NodeResult
from graphpipe.errors import (
    CompilationError,
    CyclicDependencyError,
    InvalidExpressionError,
    QueryExecutionError,
    QueryTimeoutError,
    RequestCancelledError,
    SecretNotFoundError,
    TimeRangeError,
    UnsafeQueryError,
    ValidationError,
)
from graphpipe.execution.dialects import Dialect

WORKSPACE = "ws-1"
DATA_SOURCE = "warehouse"

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(resolver: ConnectionResolver) -> QueryEngine:
    """Engine with a no-op dialect and a pinned clock."""
    return QueryEngine(resolver, dialects={"sql": Dialect()}, clock=lambda: NOW)


def request(*queries, **extra) -> ExecutionRequest:
    return ExecutionRequest.from_dict({"queries": list(queries), "dataSourceRef": DATA_SOURCE, **extra})


class TestExecutionRequest:
    """Test request parsing."""

    def test_single_query_and_time_mapping(self):
        """Test the legacy query field and a structured time range."""
        req = ExecutionRequest.from_dict(
            {
                "query": {"refId": "A", "text": "SELECT 1"},
                "timeRange": {"type": "custom", "from": "now-1h", "to": "now"},
                "parameters": {"a": 1},
                "connectorRef": "pg",
            }
        )
        assert [n.ref_id for n in req.nodes] == ["A"]
        assert req.time_range == "custom"
        assert req.time_from == "now-1h"
        assert req.parameter_values == {"a": 1}
        assert req.data_source_ref == "pg"


class TestCompile:
    """Test plan generation without database I/O."""

    def test_empty_request(self, engine: QueryEngine):
        """Test at least one node is required."""
        with pytest.raises(ValidationError):
            engine.compile(ExecutionRequest())

    def test_cycle_detected_before_any_connection(self, engine: QueryEngine, engines_built: List[str]):
        """Test cycles fail the request before SQL runs."""
        req = request(
            {"refId": "A", "text": "SELECT day, amount FROM sales"},
            {"refId": "B", "operation": "math", "expression": "A + C"},
            {"refId": "C", "operation": "math", "expression": "B * 2"},
        )
        with pytest.raises(CyclicDependencyError):
            engine.run(req, WORKSPACE)
        assert engines_built == []

    def test_time_params_bound_exactly(self, engine: QueryEngine):
        """Test __timeFrom/__timeTo are the resolved bounds."""
        req = request(
            {"refId": "A", "text": "SELECT * FROM sales WHERE day >= :__timeFrom AND day < :__timeTo"},
            timeRange="7d",
        )
        plan = engine.compile(req)
        params = plan.get_step("A").compiled.params
        assert params == {"__timeFrom": NOW - timedelta(days=7), "__timeTo": NOW}
        assert plan.time_range.end == NOW

    def test_parameter_issues_aggregated_across_nodes(self, engine: QueryEngine, engines_built: List[str]):
        """Test every node's issues are reported together."""
        req = request(
            {
                "refId": "A",
                "text": "SELECT * FROM sales WHERE region = :region",
                "parameters": [{"name": "region", "type": "enum", "enumValues": ["eu", "us"], "required": True}],
            },
            {
                "refId": "B",
                "text": "SELECT * FROM sales WHERE amount > :min_amount",
                "parameters": [{"name": "min_amount", "type": "number"}],
            },
            parameterValues={"min_amount": "lots"},
        )
        with pytest.raises(ValidationError) as exc_info:
            engine.run(req, WORKSPACE)
        codes = {i.parameter: i.code for i in exc_info.value.issues}
        assert codes == {"region": "MissingParameter", "min_amount": "TypeMismatch"}
        assert engines_built == []

    def test_missing_data_source(self, engine: QueryEngine):
        """Test SQL nodes need a data source."""
        req = ExecutionRequest.from_dict({"queries": [{"refId": "A", "text": "SELECT 1"}]})
        with pytest.raises(ValidationError) as exc_info:
            engine.compile(req)
        assert exc_info.value.issues[0].parameter == "dataSourceRef"

    def test_unsafe_sql(self, engine: QueryEngine):
        """Test write statements never reach the database."""
        with pytest.raises(UnsafeQueryError):
            engine.compile(request({"refId": "A", "text": "DELETE FROM sales"}))

    def test_undeclared_placeholder(self, engine: QueryEngine):
        """Test placeholders must be declared parameters."""
        with pytest.raises(CompilationError):
            engine.compile(request({"refId": "A", "text": "SELECT * FROM sales WHERE region = :region"}))

    def test_invalid_expression(self, engine: QueryEngine):
        """Test derived expressions are checked at compile time."""
        with pytest.raises(InvalidExpressionError):
            engine.compile(
                request(
                    {"refId": "A", "text": "SELECT 1 AS x"},
                    {"refId": "B", "operation": "reduce", "expression": "median(A)"},
                )
            )

    def test_invalid_time_range(self, engine: QueryEngine):
        """Test unknown named ranges."""
        with pytest.raises(TimeRangeError):
            engine.compile(request({"refId": "A", "text": "SELECT 1"}, timeRange="2w"))


class TestExecute:
    """Test execution against the warehouse."""

    def test_single_node_with_parameter(self, engine: QueryEngine):
        """Test driver-level binding of a declared parameter."""
        result = engine.run(
            request(
                {
                    "refId": "A",
                    "text": "SELECT day, amount FROM sales WHERE region = :region ORDER BY day",
                    "parameters": [{"name": "region", "type": "string", "required": True}],
                },
                parameterValues={"region": "eu"},
            ),
            WORKSPACE,
        )
        assert result["A"].columns == ["day", "amount"]
        assert result["A"].rows == [
            {"day": "2024-01-01", "amount": 100},
            {"day": "2024-01-02", "amount": 60},
        ]
        assert result.run_id is not None

    def test_injection_attempt_is_data(self, engine: QueryEngine):
        """Test hostile values are bound, not executed."""
        result = engine.run(
            request(
                {
                    "refId": "A",
                    "text": "SELECT COUNT(*) AS n FROM sales WHERE region = :region",
                    "parameters": [{"name": "region"}],
                },
                parameterValues={"region": "eu' OR '1'='1"},
            ),
            WORKSPACE,
        )
        assert result["A"].rows == [{"n": 0}]

    def test_dag_with_derived_nodes(self, engine: QueryEngine, engines_built: List[str]):
        """Test SQL nodes feed math and reduce nodes."""
        result = engine.run(
            request(
                {"refId": "A", "text": "SELECT day, SUM(amount) AS revenue FROM sales GROUP BY day ORDER BY day"},
                {"refId": "B", "text": "SELECT day, orders FROM orders ORDER BY day", "hidden": True},
                {"refId": "C", "operation": "math", "expression": "A / B"},
                {"refId": "D", "operation": "reduce", "expression": "sum(A)"},
            ),
            WORKSPACE,
        )
        assert result["C"].rows == [
            {"day": "2024-01-01", "value": 30.0},
            {"day": "2024-01-02", "value": None},
            {"day": "2024-01-03", "value": None},
        ]
        assert result["D"].rows == [{"value": 210}]
        assert list(result.visible()) == ["A", "C", "D"]
        assert len(engines_built) == 1

    def test_truncation(self, resolver: ConnectionResolver):
        """Test rows beyond max_rows are dropped and flagged."""
        engine = QueryEngine(resolver, options=EngineOptions(max_rows=2), dialects={"sql": Dialect()})
        result = engine.run(request({"refId": "A", "text": "SELECT * FROM sales"}), WORKSPACE)
        assert result["A"].row_count == 2
        assert result["A"].truncated is True
        assert result["A"].to_dict()["truncated"] is True

    def test_database_error(self, engine: QueryEngine):
        """Test a rejected statement fails the whole request."""
        with pytest.raises(QueryExecutionError) as exc_info:
            engine.run(
                request(
                    {"refId": "A", "text": "SELECT * FROM sales"},
                    {"refId": "B", "text": "SELECT * FROM missing_table"},
                ),
                WORKSPACE,
            )
        assert exc_info.value.ref_id == "B"
        assert "missing_table" in str(exc_info.value)

    def test_unknown_data_source(self, engine: QueryEngine):
        """Test resolution failures propagate."""
        req = ExecutionRequest.from_dict(
            {"queries": [{"refId": "A", "text": "SELECT 1"}], "dataSourceRef": "nope"}
        )
        with pytest.raises(SecretNotFoundError):
            engine.run(req, WORKSPACE)

    def test_cancelled_token(self, engine: QueryEngine):
        """Test a cancelled request does not run."""
        token = CancellationToken()
        token.cancel("client went away")
        plan = engine.compile(request({"refId": "A", "text": "SELECT 1"}))
        with pytest.raises(RequestCancelledError):
            engine.execute(plan, WORKSPACE, token)

    def test_expired_deadline(self, engine: QueryEngine):
        """Test an expired request deadline fails as a timeout."""
        ticks = iter([0.0])
        token = CancellationToken(5.0, clock=lambda: next(ticks, 100.0))
        plan = engine.compile(request({"refId": "A", "text": "SELECT 1"}))
        with pytest.raises(QueryTimeoutError):
            engine.execute(plan, WORKSPACE, token)


class RecordingExecutor:
    """Stands in for SqlExecutor; tracks how many statements run at once."""

    def __init__(self, delay: float = 0.1):
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.started: List[str] = []
        self._lock = threading.Lock()

    def execute(self, node, compiled, connection, token=None) -> NodeResult:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.started.append(node.ref_id)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        return NodeResult(ref_id=node.ref_id, columns=["day", "v"], rows=[{"day": "2024-01-01", "v": 1}])


class FailingSiblingExecutor:
    """Node A fails once B is running; B waits for its cancel callback."""

    def __init__(self):
        self.b_running = threading.Event()
        self.b_cancelled = threading.Event()

    def execute(self, node, compiled, connection, token=None) -> NodeResult:
        if node.ref_id == "A":
            self.b_running.wait(5)
            raise QueryExecutionError("A", "relation does not exist")
        token.register(self.b_cancelled.set)
        self.b_running.set()
        if not self.b_cancelled.wait(5):
            return NodeResult(ref_id=node.ref_id, columns=["v"], rows=[{"v": 1}])
        raise RequestCancelledError(token.reason or "cancelled")


def sql_nodes(*ref_ids: str) -> ExecutionRequest:
    return request(*({"refId": ref_id, "text": "SELECT 1"} for ref_id in ref_ids))


class TestConcurrency:
    """Test parallel SQL execution and failure propagation."""

    @pytest.mark.parametrize("cap", [1, 2])
    def test_parallelism_is_capped(self, resolver: ConnectionResolver, cap: int):
        """Test independent nodes overlap up to max_parallel_nodes and no further."""
        engine = QueryEngine(
            resolver,
            options=EngineOptions(max_parallel_nodes=cap),
            dialects={"sql": Dialect()},
            clock=lambda: NOW,
        )
        recorder = RecordingExecutor()
        engine.executor = recorder

        result = engine.run(sql_nodes("A", "B", "C", "D"), WORKSPACE)

        assert recorder.max_active == cap
        assert sorted(recorder.started) == ["A", "B", "C", "D"]
        assert sorted(result.results) == ["A", "B", "C", "D"]

    def test_derived_node_waits_for_inputs(self, resolver: ConnectionResolver):
        """Test a derived node sees every SQL input it names."""
        engine = QueryEngine(resolver, dialects={"sql": Dialect()}, clock=lambda: NOW)
        engine.executor = RecordingExecutor(delay=0.05)

        result = engine.run(
            request(
                {"refId": "A", "text": "SELECT 1"},
                {"refId": "B", "text": "SELECT 1"},
                {"refId": "C", "operation": "math", "expression": "A + B"},
            ),
            WORKSPACE,
        )
        assert result["C"].rows[0]["value"] == 2

    def test_failure_cancels_running_siblings(self, resolver: ConnectionResolver):
        """Test one failing node cancels in-flight statements and returns nothing."""
        engine = QueryEngine(resolver, dialects={"sql": Dialect()}, clock=lambda: NOW)
        fake = FailingSiblingExecutor()
        engine.executor = fake
        token = CancellationToken()

        with pytest.raises(QueryExecutionError) as exc_info:
            engine.execute(engine.compile(sql_nodes("A", "B")), WORKSPACE, token)

        assert exc_info.value.ref_id == "A"
        assert fake.b_cancelled.is_set()
        assert token.cancelled
