"""Graph definition storage."""

from .store import (
    FileGraphStore,
    GraphDefinition,
    GraphNotFoundError,
    GraphStore,
    InMemoryGraphStore,
    get_graph_store,
)

__all__ = [
    "FileGraphStore",
    "GraphDefinition",
    "GraphNotFoundError",
    "GraphStore",
    "InMemoryGraphStore",
    "get_graph_store",
]
