"""
Generic OIDC login (Auth0 or WorkOS), session introspection and logout.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.api.deps import (
    client_ip,
    get_auth_context,
    get_db,
    get_session_id,
    get_session_manager,
)
from teamauth.core.audit import AuditLogger
from teamauth.core.config import settings
from teamauth.core.exceptions import AuthenticationError, TeamAuthError
from teamauth.core.rate_limiter import RateLimits, limiter
from teamauth.core.session import (
    OidcSession,
    PendingHandshake,
    SessionData,
    SessionManager,
    check_handshake,
    new_state_token,
)
from teamauth.core.sso.oidc import get_oidc_provider
from teamauth.schemas.auth import LogoutResponse, MeResponse, UserPublic
from teamauth.services.identity import reconcile
from teamauth.services.strategy import AuthResult

logger = logging.getLogger("teamauth.auth")

router = APIRouter()


@router.get("/me", response_model=MeResponse, response_model_exclude_none=True)
async def read_me(auth: AuthResult = Depends(get_auth_context)):
    """Who is logged in, and through which strategy."""
    if not auth.authenticated:
        return MeResponse(authenticated=False)
    return MeResponse(
        authenticated=True,
        user=UserPublic(
            id=auth.user.id,
            email=auth.user.email,
            name=auth.user.name,
            picture=auth.user.picture,
        ),
        auth_type=auth.auth_type,
    )


@router.get("/login")
@limiter.limit(RateLimits.AUTH_LOGIN)
async def login(
    request: Request,
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    provider=Depends(get_oidc_provider),
):
    state = new_state_token()
    url = await provider.initiate_login(state)
    await manager.begin_handshake(session_id, PendingHandshake(kind="oidc", state=state))
    return RedirectResponse(url=url, status_code=302)


@router.get("/callback")
@limiter.limit(RateLimits.AUTH_CALLBACK)
async def callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
    provider=Depends(get_oidc_provider),
):
    """
    Complete the OIDC login. The pending handshake is consumed before
    anything else, so it is gone whether the login succeeds or not.
    """
    handshake = await manager.take_handshake(session_id)
    try:
        check_handshake(handshake, "oidc", state)
        if error or not code:
            raise AuthenticationError(f"Login was not completed{f': {error}' if error else ''}")

        identity = await provider.complete_login(code)
        user = await reconcile(
            db,
            provider=identity.provider,
            subject=identity.subject,
            email=identity.email,
            name=identity.name,
            picture=identity.picture,
        )
    except TeamAuthError as e:
        await AuditLogger.log_login_failure(
            db, provider=provider.name, error_code=e.code, error_message=e.message,
            ip_address=client_ip(request),
        )
        raise

    await manager.set(
        session_id,
        SessionData(
            oidc=OidcSession(
                provider=identity.provider,
                subject=identity.subject,
                user_id=user.id,
                email=user.email,
                name=user.name,
                picture=user.picture,
            )
        ),
    )
    request.state.session_id = await manager.rotate(session_id)

    await AuditLogger.log_login(db, user_id=user.id, provider=identity.provider, ip_address=client_ip(request))
    logger.info(f"OIDC login via {identity.provider} for user {user.id}")
    return RedirectResponse(url="/", status_code=302)


@router.post("/logout", response_model=LogoutResponse, response_model_exclude_none=True)
async def logout(
    request: Request,
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    auth: AuthResult = Depends(get_auth_context),
    provider=Depends(get_oidc_provider),
):
    """Destroy the session, whichever strategy created it."""
    await manager.destroy(session_id)
    request.state.session_cleared = True

    logout_url = None
    if auth.auth_type == "oidc":
        logout_url = provider.logout_url(settings.BASE_URL)
    if auth.authenticated:
        logger.info(f"User {auth.user.id} logged out ({auth.auth_type})")
    return LogoutResponse(success=True, logout_url=logout_url)
