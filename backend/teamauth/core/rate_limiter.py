"""
SlowAPI limiter for the login and callback endpoints.

Counters live in Redis when REDIS_URL is set so that limits hold across
instances; otherwise they are per process.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from teamauth.core.config import settings

logger = logging.getLogger("teamauth.rate_limiter")


class RateLimits:
    AUTH_LOGIN = settings.RATE_LIMIT_LOGIN
    AUTH_CALLBACK = settings.RATE_LIMIT_CALLBACK


def client_key(request: Request) -> str:
    """
    Limit key for a request. Forwarded headers are honoured only when
    TRUST_PROXY_HEADERS is on, since clients can set them freely.
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if forwarded:
            return forwarded
    return get_remote_address(request)


if not settings.REDIS_URL and settings.is_production:
    logger.warning("Rate limit counters are per process; set REDIS_URL to share them")

limiter = Limiter(
    key_func=client_key,
    storage_uri=settings.REDIS_URL or "memory://",
    strategy="moving-window",
    headers_enabled=True,
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit hit by {client_key(request)} on {request.url.path} ({exc.detail})")
    return JSONResponse(
        status_code=429,
        content={"error": "RATE_LIMITED", "detail": f"Too many login attempts: {exc.detail}"},
        headers={"Retry-After": "60"},
    )
