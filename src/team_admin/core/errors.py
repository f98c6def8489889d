"""Typed errors and HTTP error handlers.

- ConfigurationError: a required environment value is missing (never retried)
- NotFoundError: a referenced meeting, session, or stored file does not exist
- ParseError: a provider returned output that failed schema validation

The handlers normalize every HTTPException, request validation failure and
unhandled exception into a ``{"error": "..."}`` body.
"""

from __future__ import annotations

import structlog
from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = structlog.get_logger(__name__)


class ConfigurationError(RuntimeError):
    """Raised when a required setting is absent. Message is "Missing <NAME>"."""


class NotFoundError(LookupError):
    """Raised when a referenced row or stored object does not exist."""


class ParseError(ValueError):
    """Provider output could not be validated against its response schema.

    Callers treat this as "no data produced" rather than a hard failure.
    """

    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


# ── HTTP handlers ────────────────────────────────────────────────────────────


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    payload = detail if isinstance(detail, dict) and "error" in detail else {"error": str(detail)}
    logger.warning("http_error", path=request.url.path, status_code=exc.status_code, error=payload["error"])
    return JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid')}" if location else "Invalid request"
    logger.warning("request_validation_failed", path=request.url.path, error=message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: provider, storage and Gmail failures become a JSON 500."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": str(exc) or type(exc).__name__},
    )
