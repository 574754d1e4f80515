"""
Tests for teamauth/api/v1/auth.py - OIDC login, /me and logout.
"""
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import select

from teamauth.core.audit import AuditLog
from teamauth.core.config import settings
from teamauth.core.exceptions import UpstreamUnavailable
from teamauth.core.sso.oidc import get_oidc_provider
from teamauth.models.user import User

from conftest import (
    COOKIE_DOMAIN,
    ISSUER,
    REDIRECT_URI,
    auth0_transport,
    create_organization,
    create_user,
    login_as,
    make_auth0,
)


@pytest.fixture
def oidc_app(app, mock_oidc_provider):
    app.dependency_overrides[get_oidc_provider] = lambda: mock_oidc_provider
    return app


async def start_login(client) -> str:
    """GET /api/auth/login and return the state sent to the provider."""
    response = await client.get("/api/auth/login")
    assert response.status_code == 302
    return parse_qs(urlsplit(response.headers["location"]).query)["state"][0]


class TestMe:

    @pytest.mark.asyncio
    async def test_anonymous(self, client):
        response = await client.get("/api/auth/me")

        assert response.status_code == 200
        assert response.json() == {"authenticated": False}

    @pytest.mark.asyncio
    async def test_oidc_session(self, client, session_factory, session_manager):
        user = await create_user(session_factory, "alice@example.com", name="Alice")
        await login_as(client, session_manager, user)

        response = await client.get("/api/auth/me")

        body = response.json()
        assert body["authenticated"] is True
        assert body["authType"] == "oidc"
        assert body["user"]["id"] == user.id
        assert body["user"]["email"] == "alice@example.com"

    @pytest.mark.asyncio
    async def test_saml_identity_reported(self, client, session_factory, session_manager):
        owner = await create_user(session_factory, "owner@example.com")
        organization = await create_organization(session_factory, owner)
        await login_as(client, session_manager, owner, auth_type="saml", organization_id=organization.id)

        response = await client.get("/api/auth/me")

        assert response.json()["authType"] == "saml"


class TestLoginFlow:

    @pytest.mark.asyncio
    async def test_login_redirects_with_state(self, oidc_app, client, mock_oidc_provider):
        state = await start_login(client)

        assert len(state) == 32
        mock_oidc_provider.initiate_login.assert_awaited_once_with(state)
        assert settings.SESSION_COOKIE_NAME in client.cookies

    @pytest.mark.asyncio
    async def test_callback_logs_in_and_rotates_session(
        self, oidc_app, client, session_factory, mock_oidc_provider
    ):
        state = await start_login(client)
        pre_login_id = client.cookies.get(settings.SESSION_COOKIE_NAME)

        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        assert client.cookies.get(settings.SESSION_COOKIE_NAME) != pre_login_id
        mock_oidc_provider.complete_login.assert_awaited_once_with("code-1")

        me = (await client.get("/api/auth/me")).json()
        assert me["authenticated"] is True
        assert me["authType"] == "oidc"
        assert me["user"]["email"] == "alice@example.com"

        async with session_factory() as session:
            user = (await session.execute(select(User))).scalar_one()
            assert user.external_id == "auth0|auth0|abc123"
            logins = (await session.execute(select(AuditLog).where(AuditLog.action == "login"))).scalars().all()
            assert len(logins) == 1

    @pytest.mark.asyncio
    async def test_state_mismatch_rejected(self, oidc_app, client, session_factory, mock_oidc_provider):
        await start_login(client)

        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": "forged"})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_STATE"
        mock_oidc_provider.complete_login.assert_not_awaited()
        assert (await client.get("/api/auth/me")).json() == {"authenticated": False}

        async with session_factory() as session:
            failures = (
                await session.execute(select(AuditLog).where(AuditLog.action == "login_failed"))
            ).scalars().all()
            assert len(failures) == 1
            assert failures[0].status == "failure"

    @pytest.mark.asyncio
    async def test_callback_without_login_rejected(self, oidc_app, client):
        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": "whatever"})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_STATE"

    @pytest.mark.asyncio
    async def test_state_is_single_use(self, oidc_app, client, mock_oidc_provider):
        state = await start_login(client)
        first = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})
        assert first.status_code == 302

        replay = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})

        assert replay.status_code == 400
        assert mock_oidc_provider.complete_login.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_state_check_consumes_handshake(self, oidc_app, client):
        state = await start_login(client)
        await client.get("/api/auth/callback", params={"code": "code-1", "state": "forged"})

        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_error_param(self, oidc_app, client):
        state = await start_login(client)

        response = await client.get("/api/auth/callback", params={"error": "access_denied", "state": state})

        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_FAILED"

    @pytest.mark.asyncio
    async def test_upstream_timeout(self, oidc_app, client, mock_oidc_provider):
        mock_oidc_provider.complete_login.side_effect = UpstreamUnavailable()
        state = await start_login(client)

        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})

        assert response.status_code == 503
        assert response.json()["error"] == "UPSTREAM_UNAVAILABLE"


class TestAuth0Login:
    """Real Auth0Provider behind the routes, upstream served by MockTransport."""

    @pytest.fixture
    def seen(self):
        return []

    @pytest.fixture
    def auth0_app(self, app, seen):
        provider = make_auth0(auth0_transport(seen))
        app.dependency_overrides[get_oidc_provider] = lambda: provider
        return app

    @pytest.mark.asyncio
    async def test_login_redirects_to_auth0(self, auth0_app, client, seen):
        response = await client.get("/api/auth/login")

        assert response.status_code == 302
        location = urlsplit(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == f"{ISSUER}/authorize"
        query = parse_qs(location.query)
        assert query["client_id"] == ["auth0-client"]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["state"][0]
        discovery = seen[0]
        assert discovery.url.path == "/.well-known/openid-configuration"
        assert "authorization" not in discovery.headers

    @pytest.mark.asyncio
    async def test_full_round_trip(self, auth0_app, client, session_factory, seen):
        state = await start_login(client)

        response = await client.get("/api/auth/callback", params={"code": "c-1", "state": state})

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        me = (await client.get("/api/auth/me")).json()
        assert me["authenticated"] is True
        assert me["authType"] == "oidc"
        assert me["user"]["email"] == "alice@example.com"
        userinfo = [r for r in seen if r.url.path == "/userinfo"]
        assert userinfo[0].headers["authorization"] == "Bearer at-1"
        async with session_factory() as db:
            user = (await db.execute(select(User).where(User.email == "alice@example.com"))).scalar_one()
        assert user.external_id == "auth0|auth0|abc"


class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_destroys_session(self, oidc_app, client, session_factory, session_manager):
        user = await create_user(session_factory, "alice@example.com")
        session_id = await login_as(client, session_manager, user)

        response = await client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "logoutUrl": "https://tenant.auth0.example/v2/logout?client_id=cid",
        }
        assert await session_manager.exists(session_id) is False
        assert "Max-Age=0" in response.headers["set-cookie"]

    @pytest.mark.asyncio
    async def test_logout_clears_pending_handshake(self, oidc_app, client, session_manager):
        state = await start_login(client)
        session_id = client.cookies.get(settings.SESSION_COOKIE_NAME)

        await client.post("/api/auth/logout")

        assert await session_manager.take_handshake(session_id) is None
        client.cookies.set(settings.SESSION_COOKIE_NAME, session_id, domain=COOKIE_DOMAIN)
        response = await client.get("/api/auth/callback", params={"code": "code-1", "state": state})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_org_login_logout_has_no_provider_url(
        self, oidc_app, client, session_factory, session_manager
    ):
        owner = await create_user(session_factory, "owner@example.com")
        organization = await create_organization(session_factory, owner)
        await login_as(client, session_manager, owner, auth_type="okta", organization_id=organization.id)

        response = await client.post("/api/auth/logout")

        assert response.json() == {"success": True}
