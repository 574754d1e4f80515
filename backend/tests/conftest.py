"""
Shared test fixtures for the TeamAuth backend tests.

Each test gets its own SQLite database file and its own in-memory session
store; the application is built through create_app() with get_db overridden.
"""
import os
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["METRICS_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-min-32-chars"
os.environ["BASE_URL"] = "http://localhost:8000"
os.environ.pop("REDIS_URL", None)

from teamauth.core.cache import InMemoryCache  # noqa: E402
from teamauth.core.config import settings  # noqa: E402
from teamauth.core.session import (  # noqa: E402
    OidcSession,
    SessionData,
    SessionIdentity,
    SessionManager,
    new_session_id,
)
from teamauth.core.sso.base import ExternalIdentity  # noqa: E402
from teamauth.core.sso.oidc import Auth0Provider  # noqa: E402
from teamauth.db.base import Base  # noqa: E402
from teamauth.models.okta_config import OktaConfig  # noqa: E402
from teamauth.models.organization import Organization, Role, TeamMember  # noqa: E402
from teamauth.models.user import User  # noqa: E402

# http.cookiejar stores host-only cookies for dotless hosts under "<host>.local"
COOKIE_DOMAIN = "testserver.local"


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'teamauth.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache():
    return InMemoryCache()


@pytest.fixture
def session_manager(cache):
    return SessionManager(cache)


@pytest.fixture
def app(session_factory, cache, monkeypatch):
    """Fresh application wired to the per-test database and session store."""
    from teamauth.api.deps import get_db
    from teamauth.main import create_app

    monkeypatch.setattr("teamauth.main.get_cache", lambda: cache)
    application = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def mock_oidc_provider():
    """Stand-in for the configured Auth0/WorkOS provider."""
    provider = MagicMock()
    provider.name = "auth0"
    provider.initiate_login = AsyncMock(
        side_effect=lambda state: f"https://tenant.auth0.example/authorize?state={state}"
    )
    provider.complete_login = AsyncMock(
        return_value=ExternalIdentity(
            provider="auth0",
            subject="auth0|abc123",
            email="alice@example.com",
            name="Alice",
            picture="https://cdn.example.com/alice.png",
        )
    )
    provider.logout_url = MagicMock(return_value="https://tenant.auth0.example/v2/logout?client_id=cid")
    return provider


# ============ Data helpers ============

async def create_user(
    session_factory,
    email: str,
    name: Optional[str] = None,
    provider: str = "auth0",
) -> User:
    async with session_factory() as session:
        user = User(external_id=f"{provider}|{email}", email=email, name=name)
        session.add(user)
        await session.commit()
        return user


async def create_organization(
    session_factory,
    owner: User,
    name: str = "Acme",
    slug: str = "acme",
    **saml,
) -> Organization:
    async with session_factory() as session:
        organization = Organization(name=name, slug=slug, owner_id=owner.id, **saml)
        session.add(organization)
        await session.flush()
        session.add(TeamMember(user_id=owner.id, organization_id=organization.id, role=Role.OWNER))
        await session.commit()
        return organization


async def add_member(session_factory, organization: Organization, user: User, role: Role = Role.MEMBER) -> TeamMember:
    async with session_factory() as session:
        member = TeamMember(user_id=user.id, organization_id=organization.id, role=role)
        session.add(member)
        await session.commit()
        return member


async def create_okta_config(session_factory, organization: Organization, is_active: bool = True) -> OktaConfig:
    async with session_factory() as session:
        config = OktaConfig(
            organization_id=organization.id,
            domain="acme.okta.com",
            client_id="okta-client-id",
            client_secret="okta-client-secret",
            redirect_uri="http://testserver/api/okta/callback",
            is_active=is_active,
        )
        session.add(config)
        await session.commit()
        return config


async def login_as(
    client: AsyncClient,
    manager: SessionManager,
    user: User,
    auth_type: str = "oidc",
    organization_id: Optional[str] = None,
) -> str:
    """Put an authenticated session in the store and point the client's cookie at it."""
    session_id = new_session_id()
    if auth_type == "oidc":
        data = SessionData(
            oidc=OidcSession(
                provider="auth0",
                subject=user.external_id,
                user_id=user.id,
                email=user.email,
                name=user.name,
            )
        )
    else:
        data = SessionData(
            identity=SessionIdentity(
                id=user.id,
                email=user.email,
                name=user.name,
                organization_id=organization_id,
                auth_type=auth_type,
            )
        )
    await manager.set(session_id, data)
    client.cookies.clear()
    # Same jar key the server-issued cookie gets, so a later Set-Cookie replaces it
    client.cookies.set(settings.SESSION_COOKIE_NAME, session_id, domain=COOKIE_DOMAIN)
    return session_id


# ============ Auth0 stand-in ============

ISSUER = "https://tenant.auth0.example"
REDIRECT_URI = "http://testserver/api/auth/callback"


def auth0_transport(seen=None, userinfo=None):
    discovery = {
        "issuer": f"{ISSUER}/",
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/oauth/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
    }
    userinfo = userinfo or {
        "sub": "auth0|abc",
        "email": "alice@example.com",
        "name": "Alice",
        "picture": "https://cdn.example.com/alice.png",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=discovery)
        if path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "at-1", "token_type": "Bearer", "id_token": "x.y.z"})
        if path == "/userinfo":
            return httpx.Response(200, json=userinfo)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_auth0(transport=None, **overrides):
    options = {
        "issuer_base_url": ISSUER,
        "client_id": "auth0-client",
        "client_secret": "auth0-secret",
        "redirect_uri": REDIRECT_URI,
        "transport": transport,
    }
    options.update(overrides)
    return Auth0Provider(**options)
