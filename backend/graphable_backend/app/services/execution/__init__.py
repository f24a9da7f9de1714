"""Graph execution service package."""

from .service import GraphExecutionService, get_execution_service, shape_result

__all__ = [
    "GraphExecutionService",
    "get_execution_service",
    "shape_result",
]
