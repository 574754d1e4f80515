"""
Tests for teamauth/core/sso/okta.py - per-organization Okta OAuth2.
"""
import base64
import json
from types import SimpleNamespace
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from teamauth.core.exceptions import AuthenticationError, NotConfigured, UpstreamUnavailable
from teamauth.core.sso.okta import OktaAdapter, okta_base_url


@pytest.fixture
def okta_config():
    return SimpleNamespace(
        organization_id="org-1",
        domain="acme.okta.com",
        client_id="okta-client-id",
        client_secret="okta-client-secret",
        redirect_uri="http://testserver/api/okta/callback",
        is_active=True,
    )


def okta_transport(userinfo=None, token_status=200, seen=None):
    """Fake Okta authorization server."""
    userinfo = userinfo if userinfo is not None else {
        "sub": "00u123",
        "email": "alice@acme.com",
        "name": "Alice",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path.endswith("/token"):
            if token_status != 200:
                return httpx.Response(token_status, json={"error": "invalid_grant", "error_description": "bad code"})
            return httpx.Response(200, json={"access_token": "at-123", "token_type": "Bearer", "expires_in": 3600})
        if request.url.path.endswith("/userinfo"):
            return httpx.Response(200, json=userinfo)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestInitiateLogin:

    def test_builds_authorize_url(self, okta_config):
        url = OktaAdapter().initiate_login(okta_config, "state-1")

        parts = urlsplit(url)
        query = parse_qs(parts.query)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://acme.okta.com/oauth2/default/v1/authorize"
        assert query["client_id"] == ["okta-client-id"]
        assert query["response_type"] == ["code"]
        assert query["state"] == ["state-1"]
        assert query["redirect_uri"] == ["http://testserver/api/okta/callback"]
        assert query["scope"] == ["openid profile email"]

    def test_missing_config_not_configured(self):
        with pytest.raises(NotConfigured) as exc_info:
            OktaAdapter().initiate_login(None, "state-1")
        assert exc_info.value.message == "Okta is not configured for this organization"

    def test_inactive_config_not_configured(self, okta_config):
        okta_config.is_active = False
        with pytest.raises(NotConfigured):
            OktaAdapter().initiate_login(okta_config, "state-1")

    def test_base_url(self):
        assert okta_base_url("dev-1.okta.com") == "https://dev-1.okta.com/oauth2/default/v1"


class TestCompleteLogin:

    @pytest.mark.asyncio
    async def test_exchanges_code_and_reads_profile(self, okta_config):
        seen = []
        adapter = OktaAdapter(transport=okta_transport(seen=seen))

        identity = await adapter.complete_login(okta_config, "code-1")

        assert identity.provider == "okta"
        assert identity.subject == "00u123"
        assert identity.email == "alice@acme.com"
        assert identity.name == "Alice"

        token_request = seen[0]
        assert str(token_request.url) == "https://acme.okta.com/oauth2/default/v1/token"
        expected = base64.b64encode(b"okta-client-id:okta-client-secret").decode()
        assert token_request.headers["authorization"] == f"Basic {expected}"
        assert parse_qs(token_request.content.decode())["code"] == ["code-1"]

        userinfo_request = seen[1]
        assert userinfo_request.headers["authorization"] == "Bearer at-123"

    @pytest.mark.asyncio
    async def test_rejected_code_is_authentication_error(self, okta_config):
        adapter = OktaAdapter(transport=okta_transport(token_status=400))

        with pytest.raises(AuthenticationError):
            await adapter.complete_login(okta_config, "bad-code")

    @pytest.mark.asyncio
    async def test_profile_without_email_rejected(self, okta_config):
        adapter = OktaAdapter(transport=okta_transport(userinfo={"sub": "00u123"}))

        with pytest.raises(AuthenticationError):
            await adapter.complete_login(okta_config, "code-1")

    @pytest.mark.asyncio
    async def test_timeout_is_upstream_unavailable(self, okta_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        adapter = OktaAdapter(transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailable):
            await adapter.complete_login(okta_config, "code-1")

    @pytest.mark.asyncio
    async def test_server_error_is_upstream_unavailable(self, okta_config):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return httpx.Response(200, json={"access_token": "at-123", "token_type": "Bearer"})
            return httpx.Response(502, content=json.dumps({"error": "bad gateway"}))

        adapter = OktaAdapter(transport=httpx.MockTransport(handler))

        with pytest.raises(UpstreamUnavailable):
            await adapter.complete_login(okta_config, "code-1")

    @pytest.mark.asyncio
    async def test_inactive_config_rejected_before_network(self, okta_config):
        okta_config.is_active = False
        seen = []
        adapter = OktaAdapter(transport=okta_transport(seen=seen))

        with pytest.raises(NotConfigured):
            await adapter.complete_login(okta_config, "code-1")
        assert seen == []
