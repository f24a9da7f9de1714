"""Mapping of engine errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from graphpipe.errors import GraphpipeError, InfrastructureError

from graphable_backend.app.services.graphs import GraphNotFoundError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    # Client-caused
    "ValidationError": status.HTTP_400_BAD_REQUEST,
    "InvalidRefId": status.HTTP_400_BAD_REQUEST,
    "InvalidNode": status.HTTP_400_BAD_REQUEST,
    "CompilationError": status.HTTP_400_BAD_REQUEST,
    "UnsafeQuery": status.HTTP_400_BAD_REQUEST,
    "TimeRangeError": status.HTTP_400_BAD_REQUEST,
    "CyclicDependency": status.HTTP_400_BAD_REQUEST,
    "UnknownReference": status.HTTP_400_BAD_REQUEST,
    "DuplicateRefId": status.HTTP_400_BAD_REQUEST,
    "InvalidExpression": status.HTTP_400_BAD_REQUEST,
    "GraphNotFound": status.HTTP_404_NOT_FOUND,
    # Infrastructure
    "SecretNotFound": status.HTTP_502_BAD_GATEWAY,
    "ConnectionFailed": status.HTTP_502_BAD_GATEWAY,
    "PoolExhausted": status.HTTP_503_SERVICE_UNAVAILABLE,
    # Target database
    "QueryTimeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "QueryExecutionError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "RequestCancelled": 499,
    "UpstreamMissing": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def graphpipe_error_handler(request: Request, exc: GraphpipeError) -> JSONResponse:
    """Render engine errors as ``{error, message, details?}``."""
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if isinstance(exc, InfrastructureError) or status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc)
    else:
        logger.info("%s on %s: %s", exc.code, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def graph_not_found_handler(request: Request, exc: GraphNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Re-shape request body validation failures into ``{error, details}``."""
    issues = [
        {
            "parameter": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "code": "InvalidRequest",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "ValidationError", "message": "Invalid request", "details": {"issues": issues}},
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": "HTTPError", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error handlers on an application."""
    app.add_exception_handler(GraphpipeError, graphpipe_error_handler)
    app.add_exception_handler(GraphNotFoundError, graph_not_found_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
