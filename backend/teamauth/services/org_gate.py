"""
Organization / role gate.

Binary capability checks against the caller's current membership. Callers
without any membership get NotFound so organization existence is not leaked.
"""

from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.core.exceptions import Forbidden, NotFound, ValidationError
from teamauth.models.organization import Organization, Role, TeamMember


async def get_organization(db: AsyncSession, organization_id: str) -> Optional[Organization]:
    result = await db.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_membership(db: AsyncSession, user_id: str, organization_id: str) -> Optional[TeamMember]:
    result = await db.execute(
        select(TeamMember).where(
            TeamMember.user_id == user_id,
            TeamMember.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


def is_owner(organization: Organization, user_id: str) -> bool:
    return organization.owner_id == user_id


def is_admin(membership: Optional[TeamMember]) -> bool:
    return membership is not None and membership.role in (Role.OWNER, Role.ADMIN)


async def require_member(
    db: AsyncSession, organization_id: str, user_id: str
) -> Tuple[Organization, TeamMember]:
    membership = await get_membership(db, user_id, organization_id)
    organization = await get_organization(db, organization_id) if membership else None
    if membership is None or organization is None:
        raise NotFound("Organization not found")
    return organization, membership


async def require_admin(
    db: AsyncSession, organization_id: str, user_id: str
) -> Tuple[Organization, TeamMember]:
    organization, membership = await require_member(db, organization_id, user_id)
    if not is_admin(membership):
        raise Forbidden("Admin access required")
    return organization, membership


async def require_owner(db: AsyncSession, organization_id: str, user_id: str) -> Organization:
    organization, _ = await require_member(db, organization_id, user_id)
    if not is_owner(organization, user_id):
        raise Forbidden("Only the organization owner can perform this action")
    return organization


def check_role_change(target: TeamMember, new_role: Role) -> None:
    if target.role == Role.OWNER:
        raise ValidationError("Cannot change owner role")
    if new_role == Role.OWNER:
        raise ValidationError("Cannot assign owner role")


def check_removal(target: TeamMember) -> None:
    if target.role == Role.OWNER:
        raise ValidationError("Cannot remove organization owner")
