"""
Tests for teamauth/core/sso/oidc.py - Auth0 and WorkOS providers.
"""
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from teamauth.core.exceptions import AuthenticationError, ConfigurationError, UpstreamUnavailable
from teamauth.core.sso.oidc import Auth0Provider, WorkOSProvider, build_oidc_provider

from conftest import ISSUER, REDIRECT_URI, auth0_transport, make_auth0


class TestAuth0Provider:

    @pytest.mark.asyncio
    async def test_authorization_url_from_discovery(self):
        provider = make_auth0(auth0_transport())

        url = await provider.initiate_login("state-1")

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert url.startswith(f"{ISSUER}/authorize?")
        assert query["state"] == ["state-1"]
        assert query["client_id"] == ["auth0-client"]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["scope"] == ["openid profile email"]

    @pytest.mark.asyncio
    async def test_discovery_is_cached(self):
        seen = []
        provider = make_auth0(auth0_transport(seen=seen))

        await provider.initiate_login("s1")
        await provider.initiate_login("s2")

        discovery_calls = [r for r in seen if r.url.path == "/.well-known/openid-configuration"]
        assert len(discovery_calls) == 1

    @pytest.mark.asyncio
    async def test_complete_login(self):
        provider = make_auth0(auth0_transport())

        identity = await provider.complete_login("code-1")

        assert identity.provider == "auth0"
        assert identity.subject == "auth0|abc"
        assert identity.email == "alice@example.com"
        assert identity.picture == "https://cdn.example.com/alice.png"

    @pytest.mark.asyncio
    async def test_missing_settings_is_configuration_error(self):
        provider = make_auth0(client_secret=None)

        with pytest.raises(ConfigurationError):
            await provider.initiate_login("state-1")

    @pytest.mark.asyncio
    async def test_discovery_timeout_is_upstream_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        provider = make_auth0(httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailable):
            await provider.initiate_login("state-1")

    def test_logout_url(self):
        url = make_auth0().logout_url("http://testserver")

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == f"{ISSUER}/v2/logout"
        assert parse_qs(parts.query) == {"client_id": ["auth0-client"], "returnTo": ["http://testserver"]}


class TestWorkOSProvider:

    def make(self, transport=None):
        return WorkOSProvider(
            api_key="sk_test",
            client_id="client_01",
            redirect_uri=REDIRECT_URI,
            base_url="https://api.workos.example",
            transport=transport,
        )

    @pytest.mark.asyncio
    async def test_authorization_url(self):
        url = await self.make().initiate_login("state-1")

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert parts.path == "/user_management/authorize"
        assert query["provider"] == ["authkit"]
        assert query["client_id"] == ["client_01"]
        assert query["state"] == ["state-1"]

    @pytest.mark.asyncio
    async def test_complete_login(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "user": {
                        "id": "user_01",
                        "email": "bob@example.com",
                        "first_name": "Bob",
                        "last_name": "Builder",
                        "profile_picture_url": None,
                    },
                    "access_token": "at",
                },
            )

        identity = await self.make(httpx.MockTransport(handler)).complete_login("code-1")

        assert identity.provider == "workos"
        assert identity.subject == "user_01"
        assert identity.email == "bob@example.com"
        assert identity.name == "Bob Builder"

        body = json.loads(seen[0].content)
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "code-1"
        assert body["client_secret"] == "sk_test"

    @pytest.mark.asyncio
    async def test_rejected_code_is_authentication_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(AuthenticationError):
            await self.make(httpx.MockTransport(handler)).complete_login("bad")

    def test_no_provider_logout(self):
        assert self.make().logout_url("http://testserver") is None


class TestBuildProvider:

    def test_selects_workos(self, monkeypatch):
        from teamauth.core.config import settings

        monkeypatch.setattr(settings, "OIDC_PROVIDER", "workos")
        assert isinstance(build_oidc_provider(), WorkOSProvider)

    def test_defaults_to_auth0(self, monkeypatch):
        from teamauth.core.config import settings

        monkeypatch.setattr(settings, "OIDC_PROVIDER", "auth0")
        assert isinstance(build_oidc_provider(), Auth0Provider)
