"""FastAPI router wiring for the Graphable backend."""

from fastapi import APIRouter

from .v1 import dashboards, data_sources, graphs

api_router = APIRouter()
api_router.include_router(graphs.router, prefix="/api/v1", tags=["graphs"])
api_router.include_router(dashboards.router, prefix="/api/v1", tags=["dashboards"])
api_router.include_router(data_sources.router, prefix="/api/v1", tags=["data-sources"])
