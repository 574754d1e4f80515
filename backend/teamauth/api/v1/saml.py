"""
Per-organization SAML login.

The IdP posts the assertion back to the ACS endpoint; failures redirect to
the login page rather than returning JSON since the browser is mid-redirect.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.api.deps import client_ip, get_db, get_session_id, get_session_manager
from teamauth.core.audit import AuditLogger
from teamauth.core.exceptions import NotFound, TeamAuthError
from teamauth.core.rate_limiter import RateLimits, limiter
from teamauth.core.session import SessionData, SessionIdentity, SessionManager
from teamauth.core.sso.saml import SamlAdapter, get_saml_adapter
from teamauth.services.identity import reconcile
from teamauth.services.org_gate import get_organization

logger = logging.getLogger("teamauth.saml")

router = APIRouter()

SAML_SUCCESS_REDIRECT = "/dashboard"
SAML_FAILURE_REDIRECT = "/login?error=saml_failed"


@router.get("/login/{organization_id}")
@limiter.limit(RateLimits.AUTH_LOGIN)
async def saml_login(
    request: Request,
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    adapter: SamlAdapter = Depends(get_saml_adapter),
):
    organization = await get_organization(db, organization_id)
    if organization is None:
        raise NotFound("Organization not found")

    url = adapter.initiate_login(organization)
    logger.info(f"SAML login started for organization {organization.slug}")
    return RedirectResponse(url=url, status_code=302)


@router.post("/callback/{organization_id}")
@limiter.limit(RateLimits.AUTH_CALLBACK)
async def saml_callback(
    request: Request,
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
    adapter: SamlAdapter = Depends(get_saml_adapter),
):
    """Assertion consumer service: validate, reconcile, join the organization."""
    form = await request.form()
    post_data = {key: value for key, value in form.items() if isinstance(value, str)}

    try:
        organization = await get_organization(db, organization_id)
        if organization is None:
            raise NotFound("Organization not found")

        identity = await adapter.complete_login(organization, post_data)
        user = await reconcile(
            db,
            provider=identity.provider,
            subject=identity.subject,
            email=identity.email,
            name=identity.name,
            organization_id=organization_id,
        )
    except TeamAuthError as e:
        logger.warning(f"SAML login failed for organization {organization_id}: {e.code} {e.message}")
        await AuditLogger.log_login_failure(
            db, provider="saml", error_code=e.code, error_message=e.message,
            organization_id=organization_id, ip_address=client_ip(request),
        )
        return RedirectResponse(url=SAML_FAILURE_REDIRECT, status_code=302)

    await manager.set(
        session_id,
        SessionData(
            identity=SessionIdentity(
                id=user.id,
                email=user.email,
                name=user.name,
                picture=user.picture,
                organization_id=organization_id,
                auth_type="saml",
            )
        ),
    )
    request.state.session_id = await manager.rotate(session_id)

    await AuditLogger.log_login(
        db, user_id=user.id, provider="saml", organization_id=organization_id, ip_address=client_ip(request)
    )
    logger.info(f"SAML login for user {user.id} in organization {organization_id}")
    return RedirectResponse(url=SAML_SUCCESS_REDIRECT, status_code=302)
