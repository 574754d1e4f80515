"""
Generic OIDC login: Auth0 (discovery-based OpenID Connect) or WorkOS AuthKit.

Exactly one provider is active per deployment, selected by OIDC_PROVIDER.
The CSRF `state` is generated and verified by the caller; providers only
build the authorization URL and exchange the returned code for a profile.
"""

import logging
from functools import lru_cache
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from teamauth.core.config import settings
from teamauth.core.exceptions import AuthenticationError, ConfigurationError
from teamauth.core.sso.base import (
    OIDC_SCOPES,
    ExternalIdentity,
    http_client_options,
    require_email,
    upstream_errors,
)

logger = logging.getLogger("teamauth.sso.oidc")


def _missing(**values: Optional[str]) -> list[str]:
    return [name for name, value in values.items() if not value]


class Auth0Provider:
    """Auth0 via OpenID Connect discovery, token exchange and userinfo."""

    name = "auth0"

    def __init__(
        self,
        issuer_base_url: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.issuer_base_url = (issuer_base_url or "").rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.transport = transport
        self._metadata: Optional[dict[str, Any]] = None

    def ensure_configured(self) -> None:
        missing = _missing(
            AUTH0_ISSUER_BASE_URL=self.issuer_base_url,
            AUTH0_CLIENT_ID=self.client_id,
            AUTH0_CLIENT_SECRET=self.client_secret,
            OIDC_REDIRECT_URI=self.redirect_uri,
        )
        if missing:
            logger.error(f"Auth0 login unavailable, missing settings: {', '.join(missing)}")
            raise ConfigurationError()

    def _client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=OIDC_SCOPES,
            redirect_uri=self.redirect_uri,
            **http_client_options(self.transport),
        )

    async def _load_metadata(self, client: AsyncOAuth2Client) -> dict[str, Any]:
        if self._metadata is None:
            # Discovery is public; no bearer token may be attached yet
            response = await client.request(
                "GET",
                f"{self.issuer_base_url}/.well-known/openid-configuration",
                withhold_token=True,
            )
            response.raise_for_status()
            self._metadata = response.json()
        return self._metadata

    async def initiate_login(self, state: str) -> str:
        self.ensure_configured()
        async with self._client() as client:
            with upstream_errors("Auth0"):
                metadata = await self._load_metadata(client)
            url, _ = client.create_authorization_url(metadata["authorization_endpoint"], state=state)
        return url

    async def complete_login(self, code: str) -> ExternalIdentity:
        self.ensure_configured()
        async with self._client() as client:
            with upstream_errors("Auth0"):
                metadata = await self._load_metadata(client)
                await client.fetch_token(metadata["token_endpoint"], code=code)
                response = await client.get(metadata["userinfo_endpoint"])
                response.raise_for_status()
                profile = response.json()

        if not profile.get("sub"):
            raise AuthenticationError("Auth0 did not return a subject")
        return ExternalIdentity(
            provider=self.name,
            subject=profile["sub"],
            email=require_email("Auth0", profile),
            name=profile.get("name"),
            picture=profile.get("picture"),
        )

    def logout_url(self, return_to: str) -> Optional[str]:
        """Auth0 keeps its own SSO session; the browser must visit this to end it."""
        if not self.issuer_base_url or not self.client_id:
            return None
        query = urlencode({"client_id": self.client_id, "returnTo": return_to})
        return f"{self.issuer_base_url}/v2/logout?{query}"


class WorkOSProvider:
    """WorkOS AuthKit through the User Management API."""

    name = "workos"

    def __init__(
        self,
        api_key: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        base_url: str = "https://api.workos.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    def ensure_configured(self) -> None:
        missing = _missing(
            WORKOS_API_KEY=self.api_key,
            WORKOS_CLIENT_ID=self.client_id,
            OIDC_REDIRECT_URI=self.redirect_uri,
        )
        if missing:
            logger.error(f"WorkOS login unavailable, missing settings: {', '.join(missing)}")
            raise ConfigurationError()

    async def initiate_login(self, state: str) -> str:
        self.ensure_configured()
        return prepare_grant_uri(
            f"{self.base_url}/user_management/authorize",
            self.client_id,
            "code",
            redirect_uri=self.redirect_uri,
            state=state,
            provider="authkit",
        )

    async def complete_login(self, code: str) -> ExternalIdentity:
        self.ensure_configured()
        async with httpx.AsyncClient(**http_client_options(self.transport)) as client:
            with upstream_errors("WorkOS"):
                response = await client.post(
                    f"{self.base_url}/user_management/authenticate",
                    json={
                        "client_id": self.client_id,
                        "client_secret": self.api_key,
                        "grant_type": "authorization_code",
                        "code": code,
                    },
                )
                response.raise_for_status()
                payload = response.json()

        user = payload.get("user") or {}
        if not user.get("id"):
            raise AuthenticationError("WorkOS did not return a user")
        full_name = " ".join(part for part in (user.get("first_name"), user.get("last_name")) if part)
        return ExternalIdentity(
            provider=self.name,
            subject=user["id"],
            email=require_email("WorkOS", user),
            name=full_name or None,
            picture=user.get("profile_picture_url"),
        )

    def logout_url(self, return_to: str) -> Optional[str]:
        return None


def build_oidc_provider(transport: Optional[httpx.AsyncBaseTransport] = None):
    """Instantiate the provider selected by OIDC_PROVIDER."""
    if settings.OIDC_PROVIDER == "workos":
        return WorkOSProvider(
            api_key=settings.WORKOS_API_KEY,
            client_id=settings.WORKOS_CLIENT_ID,
            redirect_uri=settings.default_oidc_redirect_uri,
            base_url=settings.WORKOS_API_BASE_URL,
            transport=transport,
        )
    return Auth0Provider(
        issuer_base_url=settings.AUTH0_ISSUER_BASE_URL,
        client_id=settings.AUTH0_CLIENT_ID,
        client_secret=settings.AUTH0_CLIENT_SECRET,
        redirect_uri=settings.default_oidc_redirect_uri,
        transport=transport,
    )


@lru_cache()
def get_oidc_provider():
    """FastAPI dependency; one provider instance per process (keeps discovery metadata)."""
    return build_oidc_provider()
