"""Graphable FastAPI application."""

import logging

from fastapi import FastAPI

from graphpipe import __version__ as engine_version

from graphable_backend.app.api.errors import register_exception_handlers
from graphable_backend.app.api.router import api_router
from graphable_backend.app.core.config import GraphableSettings, get_settings


def create_app(settings: GraphableSettings = None) -> FastAPI:
    """
    Build the application.

    Run with ``uvicorn graphable_backend.app.main:create_app --factory``.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Graphable", version=engine_version)
    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/health", tags=["system"])
    def health() -> dict:
        return {"status": "ok", "version": engine_version}

    return app
