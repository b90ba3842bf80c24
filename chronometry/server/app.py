"""FastAPI application factory for the Chronometry server."""

import logging
import sqlite3

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .. import __version__
from .context import ApiError, ServerContext
from .routes import admin_router, auth_router, records_router

logger = logging.getLogger(__name__)


def _describe_validation(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def create_app(context: ServerContext) -> FastAPI:
    """Build the app around an explicit context (database, sessions, settings)."""
    app = FastAPI(title="Chronometry", version=__version__)
    app.state.context = context

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, **exc.extra},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = _describe_validation(exc)
        logger.debug(f"Rejected {request.method} {request.url.path}: {message}")
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(sqlite3.Error)
    async def database_error_handler(request: Request, exc: sqlite3.Error) -> JSONResponse:
        logger.error(f"Database error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Database error"})

    @app.get("/api/health")
    def health():
        return {"status": "ok", "version": __version__}

    app.include_router(auth_router)
    app.include_router(records_router)
    app.include_router(admin_router)

    return app
