"""API v1 package."""

from . import dashboards, data_sources, graphs

__all__ = ["dashboards", "data_sources", "graphs"]
