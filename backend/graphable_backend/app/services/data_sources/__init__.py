"""Data sources service package."""

from .service import (
    DataSourceService,
    build_connection_resolver,
    get_connection_resolver,
    get_data_source_service,
)

__all__ = [
    "DataSourceService",
    "build_connection_resolver",
    "get_connection_resolver",
    "get_data_source_service",
]
