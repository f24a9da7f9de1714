"""Persisted graph definitions (the fragment-storage collaborator)."""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from graphable_backend.app.core.config import get_settings

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


class GraphNotFoundError(Exception):
    """Graph not found in the workspace."""

    code = "GraphNotFound"

    def __init__(self, graph_id: str, workspace_id: str):
        self.graph_id = graph_id
        self.workspace_id = workspace_id
        super().__init__(f"Graph '{graph_id}' not found")

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), "details": {"graphId": self.graph_id}}


@dataclass
class GraphDefinition:
    """
    A saved graph: one legacy ``query`` or a list of ``queries``.

    Attributes:
        id: Graph identifier
        name: Display name
        data_source_ref: Default data source for SQL queries
        query: Legacy single SQL query
        queries: SQL and derived nodes
        parameter_schema: Parameter definitions shared by the graph
        visualization: Chart settings; ``options.disableTimeRange`` opts out of time filtering
        time_range: Default time range when the caller sends none
    """

    id: str
    name: Optional[str] = None
    data_source_ref: Optional[str] = None
    query: Optional[Dict[str, Any]] = None
    queries: List[Dict[str, Any]] = field(default_factory=list)
    parameter_schema: List[Dict[str, Any]] = field(default_factory=list)
    visualization: Dict[str, Any] = field(default_factory=dict)
    time_range: Optional[Any] = None

    @property
    def is_legacy(self) -> bool:
        return not self.queries and self.query is not None

    @property
    def disable_time_range(self) -> bool:
        options = self.visualization.get("options")
        return isinstance(options, dict) and options.get("disableTimeRange") is True

    def node_payloads(self) -> List[Dict[str, Any]]:
        """Query node dicts; the legacy query becomes node A with the graph's parameters."""
        if self.queries:
            return [dict(q) for q in self.queries]
        if self.query is None:
            return []
        node = {"refId": "A", **self.query}
        if not node.get("parameters"):
            node["parameters"] = list(self.parameter_schema)
        return [node]

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "dataSourceRef": self.data_source_ref,
            "parameterSchema": {"parameters": self.parameter_schema},
            "visualization": self.visualization,
        }
        if self.query is not None:
            result["query"] = self.query
        if self.queries:
            result["queries"] = self.queries
        if self.time_range is not None:
            result["timeRange"] = self.time_range
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> GraphDefinition:
        schema = data.get("parameterSchema", data.get("parameter_schema")) or {}
        if isinstance(schema, dict):
            schema = schema.get("parameters", [])
        return cls(
            id=str(data["id"]),
            name=data.get("name"),
            data_source_ref=data.get("dataSourceRef", data.get("data_source_ref")),
            query=data.get("query"),
            queries=list(data.get("queries") or []),
            parameter_schema=list(schema),
            visualization=dict(data.get("visualization") or {}),
            time_range=data.get("timeRange", data.get("time_range")),
        )


class GraphStore(ABC):
    """Loads graph definitions on behalf of a caller."""

    @abstractmethod
    def get(self, workspace_id: str, graph_id: str, access_token: Optional[str] = None) -> GraphDefinition:
        """
        Load a graph.

        Raises:
            GraphNotFoundError: Unknown graph or not visible to the caller
        """
        pass

    @abstractmethod
    def save(self, workspace_id: str, graph: GraphDefinition) -> None:
        pass


class FileGraphStore(GraphStore):
    """
    YAML file-based graph storage.

    Stores each graph as a separate YAML file:
        {base_path}/{workspace_id}/{graph_id}.yaml
    """

    def __init__(self, base_path: Path) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _get_path(self, workspace_id: str, graph_id: str) -> Path:
        for part in (workspace_id, graph_id):
            if not _SAFE_NAME.match(part):
                raise GraphNotFoundError(graph_id, workspace_id)
        return self.base_path / workspace_id / f"{graph_id}.yaml"

    def get(self, workspace_id: str, graph_id: str, access_token: Optional[str] = None) -> GraphDefinition:
        path = self._get_path(workspace_id, graph_id)
        if not path.exists():
            raise GraphNotFoundError(graph_id, workspace_id)

        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        data.setdefault("id", graph_id)
        return GraphDefinition.from_dict(data)

    def save(self, workspace_id: str, graph: GraphDefinition) -> None:
        path = self._get_path(workspace_id, graph.id)
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.dump(
                    graph.to_dict(),
                    f,
                    allow_unicode=True,
                    default_flow_style=False,
                    sort_keys=False,
                )
        logger.debug("Saved graph %s/%s", workspace_id, graph.id)


class InMemoryGraphStore(GraphStore):
    """Dict-backed store for tests."""

    def __init__(self) -> None:
        self._graphs: Dict[Tuple[str, str], GraphDefinition] = {}

    def get(self, workspace_id: str, graph_id: str, access_token: Optional[str] = None) -> GraphDefinition:
        graph = self._graphs.get((workspace_id, graph_id))
        if graph is None:
            raise GraphNotFoundError(graph_id, workspace_id)
        return graph

    def save(self, workspace_id: str, graph: GraphDefinition) -> None:
        self._graphs[(workspace_id, graph.id)] = graph


@lru_cache(maxsize=1)
def get_graph_store() -> GraphStore:
    """Get singleton graph store instance."""
    settings = get_settings()
    return FileGraphStore(settings.data_dir.graphs)
