"""Mapping of typed errors to JSON responses.

Every error body has the shape ``{"error": "<message>", ...context}``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import INTERNAL_ERROR_MESSAGE, InternalError, KanbanError, sanitize_server_error

logger = logging.getLogger("kanban-core.api")

_LOCATIONS = {"body", "query", "path", "header", "cookie"}


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def validation_message(exc: RequestValidationError) -> str:
    """Name the first offending field, e.g. "Invalid status"."""
    for error in exc.errors():
        if error.get("type") == "json_invalid":
            return "Invalid request body"
        fields = [part for part in error.get("loc", ()) if isinstance(part, str) and part not in _LOCATIONS]
        if fields:
            return f"Invalid {fields[0]}"
    return "Invalid request body"


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that render errors for every route."""

    @app.exception_handler(KanbanError)
    async def kanban_error_handler(request: Request, exc: KanbanError):
        message = exc.message
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
            message = sanitize_server_error(exc.message)
        return error_response(exc.status_code, message, **exc.extra)

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        internal = InternalError(str(exc))
        internal.__cause__ = exc
        return await kanban_error_handler(request, internal)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = validation_message(exc)
        logger.info(f"{request.method} {request.url.path} rejected: {message}")
        return error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Not found"
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return error_response(500, INTERNAL_ERROR_MESSAGE)
