import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from teamauth import __version__
from teamauth.api.exception_handlers import register_exception_handlers
from teamauth.api.v1 import api_router
from teamauth.core.cache import close_cache, get_cache
from teamauth.core.config import settings
from teamauth.core.csrf import CSRFMiddleware, RequestSizeLimitMiddleware
from teamauth.core.logging_config import RequestLoggingMiddleware, setup_logging
from teamauth.core.rate_limiter import limiter
from teamauth.core.session import SessionManager, SessionMiddleware
from teamauth.db.session import check_db_connection, create_tables

# Configure structured logging (JSON in production, colored in development)
setup_logging()
logger = logging.getLogger("teamauth")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses.
    """
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    environment: str
    checks: dict[str, bool]


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
        logger.info("Database tables ensured")
    logger.info(f"{settings.PROJECT_NAME} started ({settings.ENVIRONMENT}, OIDC provider: {settings.OIDC_PROVIDER})")
    yield
    await close_cache()
    logger.info(f"{settings.PROJECT_NAME} stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title=f"{settings.PROJECT_NAME} API",
        description="Multi-provider authentication with organizations and team roles",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    session_manager = SessionManager(get_cache())
    app.state.session_manager = session_manager
    app.state.limiter = limiter

    register_exception_handlers(app)

    # Added innermost first: request logging wraps everything
    app.add_middleware(SessionMiddleware, manager=session_manager)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """
        Verifies the database and the session store.
        Returns 503 if either is unreachable.
        """
        checks = {
            "database": await check_db_connection(),
            "cache": await get_cache().ping(),
        }
        healthy = all(checks.values())
        response = HealthResponse(
            status="healthy" if healthy else "unhealthy",
            service="teamauth-backend",
            version=__version__,
            environment=settings.ENVIRONMENT,
            checks=checks,
        )
        if not healthy:
            logger.warning(f"Health check failed: {checks}")
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=response.model_dump())
        return response

    if settings.METRICS_ENABLED:
        Instrumentator(
            should_group_status_codes=False,
            should_ignore_untemplated=True,
            excluded_handlers=["/health", "/metrics"],
        ).instrument(app).expose(app, include_in_schema=False)

    return app


app = create_app()
