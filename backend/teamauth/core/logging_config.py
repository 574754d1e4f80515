"""
Logging setup for the TeamAuth backend.

Production emits one JSON object per line; development gets a compact colored
console format. Every record passes through a redaction filter first, because
login flows carry authorization codes, state values and client secrets in
query strings and request bodies.
"""

import json
import logging
import re
import sys
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Optional

from teamauth.core.config import settings

# LogRecord attributes that are not caller-supplied `extra=` fields
_BUILTIN_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

_REDACT_PATTERN = re.compile(
    r"(?P<key>\b(?:code|state|client_secret|clientSecret|SAMLResponse|access_token|id_token)=)[^&\s\"']+"
)

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite", "saml2", "xmlsec")

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def redact(text: str) -> str:
    """Mask OAuth/SAML secrets embedded as key=value pairs."""
    return _REDACT_PATTERN.sub(r"\g<key>[REDACTED]", text)


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(record.getMessage())
        record.args = None
        return True


class JSONFormatter(logging.Formatter):
    def __init__(self, service_name: str = "teamauth"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service_name,
            "env": settings.ENVIRONMENT,
            "at": f"{record.module}:{record.lineno}",
        }
        payload.update(
            {key: value for key, value in vars(record).items() if key not in _BUILTIN_ATTRS}
        )
        if record.exc_info and record.exc_info[0]:
            payload["exc_type"] = record.exc_info[0].__name__
            payload["exc"] = "".join(traceback.format_exception(*record.exc_info))
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self):
        super().__init__(fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        return f"{color}{line}{self.RESET}" if color else line


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure the root logger once at startup.

    Args:
        log_level: Override the level (defaults to DEBUG when settings.DEBUG is on)
        json_logs: Force JSON output on or off (defaults to on in production)
    """
    level = (log_level or ("DEBUG" if settings.DEBUG else "INFO")).upper()
    use_json = settings.is_production if json_logs is None else json_logs

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RedactingFilter())
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("teamauth.logging").debug(f"Logging ready (level={level}, json={use_json})")


def resolve_request_id(scope) -> str:
    """Reuse a well-formed inbound X-Request-ID, otherwise mint a short one."""
    for name, value in scope.get("headers", []):
        if name == b"x-request-id":
            candidate = value.decode("latin-1")
            if _REQUEST_ID_PATTERN.match(candidate):
                return candidate
    return uuid.uuid4().hex[:12]


class RequestLoggingMiddleware:
    """
    Pure ASGI middleware: one access line per HTTP request, tagged with a request id
    that is also echoed back in the X-Request-ID response header.
    """

    SKIP_PATHS = ("/health", "/metrics")

    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger("teamauth.http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = resolve_request_id(scope)
        scope.setdefault("state", {})["request_id"] = request_id
        started = time.perf_counter()
        status_code = 500

        async def send_with_request_id(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-request-id", request_id.encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            path = scope.get("path", "/")
            if path not in self.SKIP_PATHS:
                elapsed_ms = (time.perf_counter() - started) * 1000
                query = scope.get("query_string", b"").decode("latin-1")
                target = f"{path}?{query}" if query else path
                self.logger.log(
                    logging.WARNING if status_code >= 400 else logging.INFO,
                    f"{scope.get('method')} {target} -> {status_code} ({elapsed_ms:.1f}ms)",
                    extra={"request_id": request_id, "status": status_code, "duration_ms": round(elapsed_ms, 1)},
                )
