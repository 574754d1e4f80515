"""
Server-side sessions keyed by an opaque cookie id.

A session holds at most one authenticated identity: either a local identity
established by an organization login (Okta or SAML) or a reference to a
generic OIDC login. In-flight OAuth handshakes (CSRF state plus the target
organization) live under a separate key and are consumed atomically, so a
callback can read them exactly once.

Expiry is sliding: every read refreshes the store TTL and every response
re-issues the cookie with a fresh Max-Age.
"""

import logging
import secrets
from typing import Literal, Optional

from pydantic import BaseModel
from starlette.datastructures import MutableHeaders
from starlette.requests import HTTPConnection
from starlette.responses import Response

from teamauth.core.cache import CacheBackend
from teamauth.core.config import settings
from teamauth.core.exceptions import InvalidState

logger = logging.getLogger("teamauth.session")

SESSION_ID_BYTES = 32


class SessionIdentity(BaseModel):
    """Identity established by an organization login (Okta or SAML)."""
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    organization_id: Optional[str] = None
    auth_type: Literal["okta", "saml"]


class OidcSession(BaseModel):
    """Identity established by the generic OIDC provider (Auth0 or WorkOS)."""
    provider: Literal["auth0", "workos"]
    subject: str
    user_id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class SessionData(BaseModel):
    identity: Optional[SessionIdentity] = None
    oidc: Optional[OidcSession] = None


class PendingHandshake(BaseModel):
    kind: Literal["okta", "oidc"]
    state: str
    organization_id: Optional[str] = None


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


def new_state_token() -> str:
    """Random CSRF state for an OAuth handshake."""
    return secrets.token_hex(16)


def check_handshake(
    handshake: Optional[PendingHandshake],
    kind: str,
    state: Optional[str],
) -> PendingHandshake:
    """
    Validate a consumed handshake against the state echoed by the provider.

    Raises:
        InvalidState: no pending handshake, wrong kind, or state mismatch
    """
    if handshake is None:
        raise InvalidState("No login in progress for this session")
    if handshake.kind != kind:
        raise InvalidState("Login in progress belongs to another provider")
    if not state or not secrets.compare_digest(handshake.state.encode(), state.encode()):
        raise InvalidState("Invalid state parameter")
    return handshake


class SessionManager:
    """get/set/destroy over any CacheBackend with expiry."""

    def __init__(
        self,
        cache: CacheBackend,
        ttl_seconds: int = settings.SESSION_TTL_SECONDS,
        handshake_ttl_seconds: int = settings.HANDSHAKE_TTL_SECONDS,
    ):
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.handshake_ttl_seconds = handshake_ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session:{session_id}"

    @staticmethod
    def _handshake_key(session_id: str) -> str:
        return f"session:{session_id}:handshake"

    async def exists(self, session_id: str) -> bool:
        return await self.cache.exists(self._key(session_id))

    async def get(self, session_id: str) -> SessionData:
        raw = await self.cache.get(self._key(session_id))
        if raw is None:
            return SessionData()
        await self.cache.expire(self._key(session_id), self.ttl_seconds)
        return SessionData.model_validate_json(raw)

    async def set(self, session_id: str, data: SessionData) -> None:
        await self.cache.set(self._key(session_id), data.model_dump_json(), self.ttl_seconds)

    async def destroy(self, session_id: str) -> None:
        """Remove the identity, OIDC login and any pending handshake."""
        await self.cache.delete(self._handshake_key(session_id))
        await self.cache.delete(self._key(session_id))

    async def rotate(self, session_id: str) -> str:
        """Move the session to a fresh id, e.g. right after a successful login."""
        data = await self.get(session_id)
        new_id = new_session_id()
        await self.set(new_id, data)
        await self.destroy(session_id)
        return new_id

    async def begin_handshake(self, session_id: str, handshake: PendingHandshake) -> None:
        # The session record must exist so the cookie is recognised on callback
        if not await self.exists(session_id):
            await self.set(session_id, SessionData())
        await self.cache.set(
            self._handshake_key(session_id),
            handshake.model_dump_json(),
            self.handshake_ttl_seconds,
        )

    async def take_handshake(self, session_id: str) -> Optional[PendingHandshake]:
        """Read and clear the pending handshake in one step. A second caller gets None."""
        raw = await self.cache.pop(self._handshake_key(session_id))
        if raw is None:
            return None
        return PendingHandshake.model_validate_json(raw)


class SessionMiddleware:
    """
    Pure ASGI middleware assigning a session id to every HTTP request.

    Unknown or missing cookie ids are replaced with a freshly minted id so a
    client can never choose its own session id. The (possibly rotated) id is
    exposed to handlers as `request.state.session_id`; setting
    `request.state.session_cleared = True` expires the cookie instead.
    """

    def __init__(self, app, manager: SessionManager):
        self.app = app
        self.manager = manager

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        cookie_id = connection.cookies.get(settings.SESSION_COOKIE_NAME)
        if cookie_id and await self.manager.exists(cookie_id):
            session_id = cookie_id
        else:
            session_id = new_session_id()

        state = scope.setdefault("state", {})
        state["session_id"] = session_id

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                cookie = Response()
                if state.get("session_cleared"):
                    cookie.delete_cookie(
                        settings.SESSION_COOKIE_NAME,
                        path="/",
                        secure=settings.COOKIE_SECURE,
                        httponly=True,
                        samesite="lax",
                    )
                else:
                    cookie.set_cookie(
                        settings.SESSION_COOKIE_NAME,
                        state["session_id"],
                        max_age=self.manager.ttl_seconds,
                        path="/",
                        secure=settings.COOKIE_SECURE,
                        httponly=True,
                        samesite="lax",
                    )
                headers = MutableHeaders(scope=message)
                for name, value in cookie.raw_headers:
                    if name == b"set-cookie":
                        headers.append("set-cookie", value.decode("latin-1"))
            await send(message)

        await self.app(scope, receive, send_wrapper)
