"""
Request guards for the cookie-authenticated API.

CSRFMiddleware implements the double-submit cookie check (enforced in
production only). It is unrelated to the OAuth `state` parameter checked on
login callbacks. RequestSizeLimitMiddleware caps request bodies.
"""

import logging
import secrets
from typing import Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from teamauth.core.config import settings

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "csrf_token"
CSRF_HEADER_NAME = "X-CSRF-Token"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

DEFAULT_EXEMPT_PATHS = ("/health", "/metrics", "/docs", "/redoc", "/openapi.json")

# IdPs post assertions cross-site and cannot echo the header
DEFAULT_EXEMPT_PREFIXES = (f"{settings.API_PREFIX}/saml/callback/",)


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Safe requests get a JS-readable `csrf_token` cookie. Unsafe requests must
    send the same value back in the X-CSRF-Token header.
    """

    def __init__(
        self,
        app,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
        exempt_prefixes: Iterable[str] = DEFAULT_EXEMPT_PREFIXES,
    ):
        super().__init__(app)
        self.exempt_paths = frozenset(exempt_paths)
        self.exempt_prefixes = tuple(exempt_prefixes)

    def is_exempt(self, path: str) -> bool:
        return path in self.exempt_paths or path.startswith(self.exempt_prefixes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method in SAFE_METHODS:
            response = await call_next(request)
            if CSRF_COOKIE_NAME not in request.cookies:
                response.set_cookie(
                    CSRF_COOKIE_NAME,
                    secrets.token_urlsafe(32),
                    max_age=settings.SESSION_TTL_SECONDS,
                    secure=settings.COOKIE_SECURE,
                    httponly=False,
                    samesite="lax",
                )
            return response

        if settings.is_production and not self.is_exempt(request.url.path) and not self.token_matches(request):
            logger.warning(f"CSRF check failed: {request.method} {request.url.path} from {_client_host(request)}")
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"error": "CSRF_FAILED", "detail": "CSRF token validation failed"},
            )
        return await call_next(request)

    @staticmethod
    def token_matches(request: Request) -> bool:
        cookie = request.cookies.get(CSRF_COOKIE_NAME)
        header = request.headers.get(CSRF_HEADER_NAME)
        return bool(cookie and header) and secrets.compare_digest(cookie, header)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects bodies whose declared Content-Length exceeds `max_size` (1 MiB default)."""

    def __init__(self, app, max_size: int = 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_size:
            logger.warning(f"Rejected {declared}-byte body on {request.url.path} from {_client_host(request)}")
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={"error": "REQUEST_TOO_LARGE", "detail": "Request body too large"},
            )
        return await call_next(request)
