"""
Error taxonomy for the billing API

Core functions raise these, route handlers let them bubble up and the
exception handlers registered in ``main.py`` turn them into JSON
``{"detail": ...}`` responses.

  ValidationError     → 400  (malformed or conflicting input)
  NotFoundError       → 404  (absent, or caller may not know it exists)
  AuthorizationError  → 403  (privilege missing, existence not secret)
  UnexpectedError     → 500  (database, upstream, serialization)
"""

import logging

import psycopg2
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("billing.errors")

# Do not change: distinct not-found messages would leak which ids exist.
NOT_FOUND_MESSAGE = "Resource not found"
UNEXPECTED_MESSAGE = "Internal server error, contact admin or check logs"


class ApiError(Exception):
    """Base class of every error a route may surface."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    @property
    def detail(self) -> str:
        return str(self)


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ApiError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = NOT_FOUND_MESSAGE):
        super().__init__(message)

    @property
    def detail(self) -> str:
        return NOT_FOUND_MESSAGE


class AuthorizationError(ApiError):
    status_code = status.HTTP_403_FORBIDDEN


class UnexpectedError(ApiError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    @property
    def detail(self) -> str:
        return UNEXPECTED_MESSAGE


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if isinstance(exc, UnexpectedError):
        logger.error(
            "Unexpected error on %s: %s", request.url.path, exc,
            exc_info=exc.__cause__ or exc,
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render any uncaught failure, database errors included, as UnexpectedError."""
    error = UnexpectedError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return await api_error_handler(request, error)


def register_error_handlers(app) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(psycopg2.Error, unexpected_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
