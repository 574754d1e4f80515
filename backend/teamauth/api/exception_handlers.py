"""
Exception handlers turning errors into the standard JSON error shape:
{"error": <code>, "detail": <message>, "details"?: ..., "timestamp", "path"}
"""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from teamauth.core.config import settings
from teamauth.core.exceptions import SECURITY_EVENT_ERRORS, ConfigurationError, TeamAuthError
from teamauth.core.rate_limiter import rate_limit_exceeded_handler

logger = logging.getLogger("teamauth.errors")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: str
    detail: str | None = None
    details: dict | list | None = None
    timestamp: str
    path: str | None = None


def error_response(
    request: Request,
    status_code: int,
    error: str,
    detail: str | None,
    details: dict | list | None = None,
) -> JSONResponse:
    content = ErrorResponse(
        error=error,
        detail=detail,
        details=details or None,
        timestamp=datetime.now(timezone.utc).isoformat(),
        path=request.url.path,
    ).model_dump(exclude_none=True)
    return JSONResponse(status_code=status_code, content=content)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def teamauth_exception_handler(request: Request, exc: TeamAuthError) -> JSONResponse:
    extra = {
        "request_id": _request_id(request),
        "error_code": exc.code,
        "path": request.url.path,
    }
    if isinstance(exc, SECURITY_EVENT_ERRORS):
        logger.warning(
            f"Security event {exc.code} on {request.method} {request.url.path}: {exc.message} "
            f"from {request.client.host if request.client else 'unknown'}",
            extra=extra,
        )
    elif isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error on {request.url.path}: {exc.message}", extra=extra)
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}", extra=extra)

    return error_response(request, exc.status_code, exc.code, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    logger.info(
        f"Validation error on {request.url.path}",
        extra={"request_id": _request_id(request), "errors": errors},
    )
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Request validation failed",
        errors,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(request, exc.status_code, "HTTP_ERROR", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last resort: log everything, tell the client nothing internal.
    """
    error_id = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    logger.error(
        f"Unhandled exception [{error_id}] on {request.method} {request.url.path}: {exc!r}",
        exc_info=exc,
        extra={"request_id": _request_id(request), "error_id": error_id},
    )

    if settings.is_production or not settings.DEBUG:
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            f"An unexpected error occurred. Reference ID: {error_id}",
        )

    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        exc.__class__.__name__,
        str(exc),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TeamAuthError, teamauth_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
