"""Callable error taxonomy and the FastAPI handlers that render it.

Errors are returned in the callable-protocol envelope:
``{"error": {"status": "PERMISSION_DENIED", "message": "..."}}``.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FunctionsError(Exception):
    """Base class for errors surfaced to the caller."""

    status = "INTERNAL"
    http_status = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": {"status": self.status, "message": self.message}}


class Unauthenticated(FunctionsError):
    status = "UNAUTHENTICATED"
    http_status = 401
    default_message = "Authentication required"


class PermissionDenied(FunctionsError):
    status = "PERMISSION_DENIED"
    http_status = 403
    default_message = "Insufficient permissions"


class InvalidArgument(FunctionsError):
    status = "INVALID_ARGUMENT"
    http_status = 400
    default_message = "Invalid argument"


class NotFound(FunctionsError):
    status = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"


class FailedPrecondition(FunctionsError):
    status = "FAILED_PRECONDITION"
    http_status = 400
    default_message = "Failed precondition"


class Internal(FunctionsError):
    pass


@contextmanager
def reported(operation: str) -> Iterator[None]:
    """Log failures of a callable and hide unexpected ones behind ``Internal``."""
    try:
        yield
    except FunctionsError as exc:
        logger.warning("Error in %s: %s %s", operation, exc.status, exc.message)
        raise
    except Exception as exc:
        logger.exception("Error in %s", operation)
        raise Internal() from exc


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FunctionsError)
    async def functions_error_handler(request: Request, exc: FunctionsError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = (exc.errors() or [{}])[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "data"))
        message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request payload"
        return JSONResponse(status_code=400, content=InvalidArgument(message).to_dict())

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(status_code=500, content=Internal().to_dict())
