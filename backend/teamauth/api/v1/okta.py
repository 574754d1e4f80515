"""
Per-organization Okta login and Okta configuration management.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.api.deps import (
    client_ip,
    get_current_user,
    get_db,
    get_session_id,
    get_session_manager,
)
from teamauth.core.audit import AuditLogger
from teamauth.core.exceptions import AuthenticationError, InvalidState, NotFound, TeamAuthError
from teamauth.core.rate_limiter import RateLimits, limiter
from teamauth.core.session import (
    PendingHandshake,
    SessionData,
    SessionIdentity,
    SessionManager,
    check_handshake,
    new_state_token,
)
from teamauth.core.sso.okta import OktaAdapter, get_okta_adapter
from teamauth.models.okta_config import OktaConfig
from teamauth.models.organization import Organization
from teamauth.models.user import User
from teamauth.schemas.okta import (
    OktaConfigResponse,
    OktaConfigUpsert,
    OktaPublicConfig,
    OktaPublicSettings,
    OktaToggle,
    OktaToggleResponse,
    OrganizationRef,
)
from teamauth.services.identity import reconcile
from teamauth.services.org_gate import require_admin

logger = logging.getLogger("teamauth.okta")

router = APIRouter()


async def get_okta_config(db: AsyncSession, organization_id: str) -> Optional[OktaConfig]:
    result = await db.execute(select(OktaConfig).where(OktaConfig.organization_id == organization_id))
    return result.scalar_one_or_none()


async def get_organization_by_slug(db: AsyncSession, slug: str) -> Organization:
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    organization = result.scalar_one_or_none()
    if organization is None:
        raise NotFound("Organization not found")
    return organization


@router.get("/login/{slug}")
@limiter.limit(RateLimits.AUTH_LOGIN)
async def okta_login(
    request: Request,
    slug: str,
    db: AsyncSession = Depends(get_db),
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    adapter: OktaAdapter = Depends(get_okta_adapter),
):
    """Start the Okta handshake for the organization identified by slug."""
    organization = await get_organization_by_slug(db, slug)
    config = await get_okta_config(db, organization.id)

    state = new_state_token()
    url = adapter.initiate_login(config, state)
    await manager.begin_handshake(
        session_id,
        PendingHandshake(kind="okta", state=state, organization_id=organization.id),
    )
    logger.info(f"Okta login started for organization {organization.slug}")
    return RedirectResponse(url=url, status_code=302)


@router.get("/callback")
@limiter.limit(RateLimits.AUTH_CALLBACK)
async def okta_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    adapter: OktaAdapter = Depends(get_okta_adapter),
):
    """
    Complete the Okta handshake.

    The stored state is taken (read and cleared) before it is compared, so a
    replayed or concurrent callback for the same handshake fails with
    InvalidState.
    """
    handshake = await manager.take_handshake(session_id)
    organization_id = handshake.organization_id if handshake else None
    try:
        check_handshake(handshake, "okta", state)
        if not organization_id:
            raise InvalidState("Organization not found in session")
        if error or not code:
            raise AuthenticationError(f"Login was not completed{f': {error}' if error else ''}")

        config = await get_okta_config(db, organization_id)
        identity = await adapter.complete_login(config, code)
        user = await reconcile(
            db,
            provider=identity.provider,
            subject=identity.subject,
            email=identity.email,
            name=identity.name,
            picture=identity.picture,
            organization_id=organization_id,
        )
    except TeamAuthError as e:
        await AuditLogger.log_login_failure(
            db, provider="okta", error_code=e.code, error_message=e.message,
            organization_id=organization_id, ip_address=client_ip(request),
        )
        raise

    await manager.set(
        session_id,
        SessionData(
            identity=SessionIdentity(
                id=user.id,
                email=user.email,
                name=user.name,
                picture=user.picture,
                organization_id=organization_id,
                auth_type="okta",
            )
        ),
    )
    request.state.session_id = await manager.rotate(session_id)

    await AuditLogger.log_login(
        db, user_id=user.id, provider="okta", organization_id=organization_id, ip_address=client_ip(request)
    )
    logger.info(f"Okta login for user {user.id} in organization {organization_id}")
    return RedirectResponse(url="/", status_code=302)


@router.post("/config", response_model=OktaConfigResponse)
async def upsert_okta_config(
    payload: OktaConfigUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Create or replace an organization's Okta settings (admins only)."""
    await require_admin(db, payload.organization_id, current_user.id)

    config = await get_okta_config(db, payload.organization_id)
    created = config is None
    if created:
        config = OktaConfig(organization_id=payload.organization_id)
        db.add(config)

    config.domain = payload.domain
    config.client_id = payload.client_id
    config.client_secret = payload.client_secret
    config.redirect_uri = str(payload.redirect_uri)
    config.is_active = payload.is_active
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="okta_config_create" if created else "okta_config_update",
        user_id=current_user.id,
        organization_id=payload.organization_id,
        resource_type="okta_config",
        resource_id=config.id,
        details={"domain": config.domain, "is_active": config.is_active},
    )
    logger.info(f"Okta config {'created' if created else 'updated'} for organization {payload.organization_id}")
    return OktaConfigResponse.from_config(config)


@router.put("/config/{organization_id}/toggle", response_model=OktaToggleResponse)
async def toggle_okta_config(
    organization_id: str,
    payload: OktaToggle,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await require_admin(db, organization_id, current_user.id)

    config = await get_okta_config(db, organization_id)
    if config is None:
        raise NotFound("Okta configuration not found")

    config.is_active = payload.is_active
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="okta_config_toggle",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="okta_config",
        resource_id=config.id,
        details={"is_active": payload.is_active},
    )
    return OktaToggleResponse(success=True, is_active=payload.is_active)


@router.get("/config/{slug}", response_model=OktaPublicConfig)
async def read_public_okta_config(slug: str, db: AsyncSession = Depends(get_db)):
    """Public settings for the organization login page; never includes the secret."""
    organization = await get_organization_by_slug(db, slug)
    config = await get_okta_config(db, organization.id)
    if config is None:
        raise NotFound("Okta configuration not found")

    return OktaPublicConfig(
        organization=OrganizationRef(id=organization.id, name=organization.name, slug=organization.slug),
        okta_config=OktaPublicSettings(
            organization_id=config.organization_id,
            domain=config.domain,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            is_active=config.is_active,
        ),
    )
