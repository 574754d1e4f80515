"""
Identity reconciliation: map an asserted external identity to a local user.

Every login path funnels through `reconcile`. Email is the join key across
providers, so reconciling the same email twice (or concurrently) always
yields the same user row. The unique constraints on users.email and
team_members(user_id, organization_id) are the enforcement point; a lost
insert race is turned into a lookup of the winning row.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.core.audit import AuditLogger
from teamauth.models.organization import Role, TeamMember
from teamauth.models.user import User
from teamauth.services.org_gate import get_membership

logger = logging.getLogger("teamauth.identity")


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def find_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def _create_user(
    db: AsyncSession,
    provider: str,
    subject: str,
    email: str,
    name: Optional[str],
    picture: Optional[str],
) -> User:
    user = User(
        external_id=f"{provider}|{subject}",
        email=email,
        name=name,
        picture=picture,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await find_user_by_email(db, email)
        if existing is None:
            raise
        logger.info(f"Concurrent first login for {email}, using user {existing.id}")
        return existing

    logger.info(f"Created user {user.id} for {email} via {provider}")
    return user


async def ensure_membership(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    role: Role = Role.MEMBER,
) -> TeamMember:
    """Return the existing membership untouched, or create one with `role`."""
    existing = await get_membership(db, user_id, organization_id)
    if existing is not None:
        return existing

    member = TeamMember(user_id=user_id, organization_id=organization_id, role=role)
    db.add(member)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_membership(db, user_id, organization_id)
        if existing is None:
            raise
        return existing

    logger.info(f"Added user {user_id} to organization {organization_id} as {role.value}")
    return member


async def reconcile(
    db: AsyncSession,
    provider: str,
    subject: str,
    email: str,
    name: Optional[str] = None,
    picture: Optional[str] = None,
    organization_id: Optional[str] = None,
) -> User:
    """
    Find or create the local user for an external identity.

    Args:
        db: Database session
        provider: Provider key, becomes the external_id prefix ("okta", "saml", ...)
        subject: Provider's stable subject id (sub, NameID)
        email: Asserted email; the lookup key
        name: Display name; only fills a missing value on existing users
        picture: Avatar URL; only fills a missing value on existing users
        organization_id: When set, also ensure a MEMBER membership in this organization

    Returns:
        The local User
    """
    email = normalize_email(email)
    user = await find_user_by_email(db, email)

    if user is None:
        user = await _create_user(db, provider, subject, email, name, picture)
    else:
        if user.provider != provider:
            # Email is the join key, so this links the account; flagged for review
            logger.warning(
                f"identity.cross_provider_link: {email} first seen via '{user.provider}', "
                f"now asserted by '{provider}'",
                extra={"user_id": user.id, "provider": provider},
            )
            await AuditLogger.log(
                db=db,
                action="identity_cross_provider_link",
                user_id=user.id,
                organization_id=organization_id,
                resource_type="user",
                resource_id=user.id,
                details={"first_provider": user.provider, "provider": provider},
            )

        changed = False
        if name and not user.name:
            user.name = name
            changed = True
        if picture and not user.picture:
            user.picture = picture
            changed = True
        if changed:
            await db.commit()

    if organization_id:
        await ensure_membership(db, user.id, organization_id)

    return user
