"""
Okta OAuth2 login, configured per organization.

Each organization stores its own Okta domain and client credentials
(OktaConfig). Nothing is registered globally: the adapter is handed the
organization's config on every call.
"""

import logging
from typing import Optional

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from teamauth.core.exceptions import AuthenticationError, NotConfigured
from teamauth.core.sso.base import (
    OIDC_SCOPES,
    ExternalIdentity,
    http_client_options,
    require_email,
    upstream_errors,
)
from teamauth.models.okta_config import OktaConfig

logger = logging.getLogger("teamauth.sso.okta")


def okta_base_url(domain: str) -> str:
    return f"https://{domain}/oauth2/default/v1"


class OktaAdapter:
    name = "okta"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    @staticmethod
    def ensure_active(config: Optional[OktaConfig]) -> OktaConfig:
        if config is None or not config.is_active:
            raise NotConfigured("Okta is not configured for this organization")
        return config

    def initiate_login(self, config: Optional[OktaConfig], state: str) -> str:
        config = self.ensure_active(config)
        return prepare_grant_uri(
            f"{okta_base_url(config.domain)}/authorize",
            config.client_id,
            "code",
            redirect_uri=config.redirect_uri,
            scope=OIDC_SCOPES,
            state=state,
        )

    async def complete_login(self, config: Optional[OktaConfig], code: str) -> ExternalIdentity:
        """Exchange the code (client_secret_basic) and read the userinfo endpoint."""
        config = self.ensure_active(config)
        base_url = okta_base_url(config.domain)

        async with AsyncOAuth2Client(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            token_endpoint_auth_method="client_secret_basic",
            **http_client_options(self.transport),
        ) as client:
            with upstream_errors("Okta"):
                await client.fetch_token(f"{base_url}/token", code=code)
                response = await client.get(f"{base_url}/userinfo")
                response.raise_for_status()
                profile = response.json()

        if not profile.get("sub"):
            raise AuthenticationError("Okta did not return a subject")
        return ExternalIdentity(
            provider=self.name,
            subject=profile["sub"],
            email=require_email("Okta", profile),
            name=profile.get("name"),
            picture=profile.get("picture"),
        )


_okta_adapter = OktaAdapter()


def get_okta_adapter() -> OktaAdapter:
    return _okta_adapter
