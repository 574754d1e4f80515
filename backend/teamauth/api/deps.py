import logging
from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.core.exceptions import NotAuthenticated
from teamauth.core.session import SessionData, SessionManager
from teamauth.db.session import AsyncSessionLocal
from teamauth.models.user import User
from teamauth.services.strategy import AuthResult, resolve

logger = logging.getLogger("teamauth.deps")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_session_id(request: Request) -> str:
    """Session id assigned by SessionMiddleware for this request."""
    return request.state.session_id


async def get_session_data(
    session_id: str = Depends(get_session_id),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionData:
    return await manager.get(session_id)


async def get_auth_context(session: SessionData = Depends(get_session_data)) -> AuthResult:
    """Which login (if any) is behind this request; passed explicitly to handlers."""
    return resolve(session)


async def get_current_user(
    auth: AuthResult = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    The local user behind the session.

    Raises:
        NotAuthenticated: no login in this session, or the user row is gone
    """
    if not auth.authenticated or auth.user is None:
        raise NotAuthenticated()

    user = await db.get(User, auth.user.id)
    if user is None:
        logger.warning(f"Session references missing user {auth.user.id}")
        raise NotAuthenticated()
    return user


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
