"""Domain exceptions and their HTTP rendering."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MarketplaceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    """Missing or malformed input. Raised before any side effect."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class AuthenticationError(MarketplaceError):
    """Missing, invalid or expired credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication failed"


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class NotFoundOrUnauthorizedError(NotFoundError):
    """The record does not exist or belongs to someone else.

    The two cases are deliberately indistinguishable to the caller so that
    non-owners cannot probe for listing ids.
    """

    default_message = "Product not found or not authorized"


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class DependencyError(MarketplaceError):
    """The database or the asset store is unavailable."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "A backing service is unavailable"


def _format_request_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p not in ("body", "query"))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    """Register the handlers that turn domain errors into JSON responses."""

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        headers = None
        if isinstance(exc, AuthenticationError):
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": _format_request_errors(exc)},
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Server error"},
        )
