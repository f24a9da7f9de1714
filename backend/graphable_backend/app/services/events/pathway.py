"""Audit event pathway.

The service only needs a handle to write events to; delivery guarantees
belong to whatever pipeline sits behind the pathway.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

GRAPH_FLOW = "graphable.graph.0"
GRAPH_EXECUTED = "graph.executed.0"
GRAPH_PREVIEWED = "graph.previewed.0"


class EventPathway(ABC):
    """Write-only handle to the external event pipeline."""

    @abstractmethod
    def write(self, flow_type: str, event_type: str, payload: Dict[str, Any]) -> None:
        pass


class LoggingPathway(EventPathway):
    """Writes events to the application log."""

    def write(self, flow_type: str, event_type: str, payload: Dict[str, Any]) -> None:
        logger.info("event %s/%s %s", flow_type, event_type, payload)


class RecordingPathway(EventPathway):
    """Keeps events in memory; used by tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def write(self, flow_type: str, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append((flow_type, event_type, payload))


def emit(pathway: EventPathway, flow_type: str, event_type: str, payload: Dict[str, Any]) -> None:
    """Fire and forget: pathway failures are logged, never raised."""
    try:
        pathway.write(flow_type, event_type, payload)
    except Exception:
        logger.warning("Failed to emit %s/%s", flow_type, event_type, exc_info=True)


@lru_cache(maxsize=1)
def get_event_pathway() -> EventPathway:
    return LoggingPathway()
