"""Tests for the graph execution service."""

import threading
import time
from datetime import datetime, timezone

import pytest

from graphable_backend.app.services.events import EventPathway, RecordingPathway, emit
from graphable_backend.app.services.execution import GraphExecutionService
from graphable_backend.app.services.graphs import GraphDefinition, GraphNotFoundError, InMemoryGraphStore
from graphpipe import QueryEngine
from graphpipe.execution.dialects import Dialect

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class BrokenPathway(EventPathway):
    def write(self, flow_type, event_type, payload):
        raise RuntimeError("pipeline down")


@pytest.fixture
def graphs() -> InMemoryGraphStore:
    store = InMemoryGraphStore()
    store.save(
        "ws-1",
        GraphDefinition(
            id="windowed",
            data_source_ref="warehouse",
            queries=[
                {
                    "refId": "A",
                    "text": "SELECT :__timeFrom AS time_from, :__timeTo AS time_to",
                }
            ],
            time_range="30d",
        ),
    )
    return store


def make_service(resolver, graphs, pathway) -> GraphExecutionService:
    engine = QueryEngine(resolver, dialects={"sql": Dialect()}, clock=lambda: NOW)
    return GraphExecutionService(engine, graphs, pathway)


class TestGraphExecutionService:
    """Test preview and saved graph execution."""

    def test_graph_time_range_default(self, resolver, graphs):
        """Test the graph's own time range applies when the caller sends none."""
        pathway = RecordingPathway()
        service = make_service(resolver, graphs, pathway)

        service.execute_graph("ws-1", "windowed")

        payload = pathway.events[-1][2]
        assert payload["timeRange"]["from"] == "2024-05-16T12:00:00+00:00"
        assert payload["timeRange"]["to"] == NOW.isoformat()
        assert payload["nodes"] == {"A": 1}

    def test_caller_time_range_wins(self, resolver, graphs):
        """Test an explicit time range overrides the graph's."""
        pathway = RecordingPathway()
        service = make_service(resolver, graphs, pathway)

        service.execute_graph("ws-1", "windowed", time_range={"type": "custom", "from": "now-1h"})

        assert pathway.events[-1][2]["timeRange"]["from"] == "2024-06-15T11:00:00+00:00"

    def test_preview_uses_node_data_source(self, resolver, graphs):
        """Test preview falls back to the first node's data source."""
        service = make_service(resolver, graphs, RecordingPathway())
        body = service.preview(
            "ws-1",
            {"queries": [{"refId": "A", "text": "SELECT COUNT(*) AS n FROM events", "dataSourceRef": "warehouse"}]},
        )
        assert body == {"columns": ["n"], "data": [{"n": 105}]}

    def test_event_failures_are_swallowed(self, resolver, graphs):
        """Test a broken event pipeline never fails a request."""
        service = make_service(resolver, graphs, BrokenPathway())
        body = service.execute_graph("ws-1", "windowed")
        assert body["columns"] == ["time_from", "time_to"]

    def test_emit_logs_failures(self, caplog):
        """Test emit logs instead of raising."""
        emit(BrokenPathway(), "flow", "event", {})
        assert "Failed to emit flow/event" in caplog.text


class SlowGraphService(GraphExecutionService):
    """Replaces graph execution with a sleep that records overlap."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def execute_graph(self, workspace_id, graph_id, parameters=None, access_token=None, time_range=None, include_nodes=False):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.1)
            if graph_id == "missing":
                raise GraphNotFoundError(graph_id, workspace_id)
            return {"columns": ["region"], "data": [{"region": parameters.get("region")}]}
        finally:
            with self._lock:
                self.active -= 1


class TestDashboardRendering:
    """Test tiles render concurrently with per-tile errors."""

    def test_tiles_run_concurrently_in_order(self, resolver, graphs):
        """Test tiles overlap up to the cap and keep request order."""
        service = SlowGraphService(
            QueryEngine(resolver, dialects={"sql": Dialect()}),
            graphs,
            RecordingPathway(),
            max_parallel_tiles=3,
        )
        tiles = [{"tileId": f"t{i}", "graphId": "g", "parameters": {"region": f"r{i}"}} for i in range(5)]

        body = service.render_dashboard("ws-1", tiles)

        assert [t["tileId"] for t in body["tiles"]] == ["t0", "t1", "t2", "t3", "t4"]
        assert [t["data"][0]["region"] for t in body["tiles"]] == ["r0", "r1", "r2", "r3", "r4"]
        assert service.max_active == 3

    def test_failing_tile_does_not_block_others(self, resolver, graphs):
        """Test one failing tile reports an error next to rendered tiles."""
        service = SlowGraphService(QueryEngine(resolver, dialects={"sql": Dialect()}), graphs, RecordingPathway())

        body = service.render_dashboard(
            "ws-1",
            [{"graphId": "g"}, {"tileId": "bad", "graphId": "missing"}],
            parameters={"region": "eu"},
        )

        first, second = body["tiles"]
        assert first["tileId"] == "0"
        assert first["data"] == [{"region": "eu"}]
        assert second["error"]["error"] == "GraphNotFound"
        assert "data" not in second

    def test_empty_dashboard(self, resolver, graphs):
        service = make_service(resolver, graphs, RecordingPathway())
        assert service.render_dashboard("ws-1", []) == {"tiles": []}
