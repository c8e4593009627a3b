"""
Exception handlers for the HTTP layer.

Domain errors carry their own status code; everything else unexpected is
logged with its traceback and answered with a generic 500.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.db_retry import DatabaseRetryableError
from api.errors import UpstreamError, VixoraError

logger = logging.getLogger(__name__)


async def vixora_error_handler(request: Request, exc: VixoraError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.warning(f"Upstream failure on {request.url.path}: {exc.message} (status {exc.upstream_status})")
    elif exc.status_code >= 500:
        logger.error(f"Error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def database_retry_handler(request: Request, exc: DatabaseRetryableError) -> JSONResponse:
    """Handle database locked errors with a 503 response."""
    logger.warning(f"Database locked error: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Database temporarily unavailable, please retry"},
        headers={"Retry-After": "1"},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unexpected error in {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VixoraError, vixora_error_handler)
    app.add_exception_handler(DatabaseRetryableError, database_retry_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
