"""Audit event emission."""

from .pathway import (
    GRAPH_EXECUTED,
    GRAPH_FLOW,
    GRAPH_PREVIEWED,
    EventPathway,
    LoggingPathway,
    RecordingPathway,
    emit,
    get_event_pathway,
)

__all__ = [
    "GRAPH_EXECUTED",
    "GRAPH_FLOW",
    "GRAPH_PREVIEWED",
    "EventPathway",
    "LoggingPathway",
    "RecordingPathway",
    "emit",
    "get_event_pathway",
]
