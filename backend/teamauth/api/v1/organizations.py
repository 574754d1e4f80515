"""
Organization CRUD.

Reads are limited to members, updates and deletes to the owner.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.api.deps import get_current_user, get_db
from teamauth.core.audit import AuditLogger
from teamauth.core.exceptions import ValidationError
from teamauth.models.okta_config import OktaConfig
from teamauth.models.organization import ROLE_ORDER, Organization, Role, TeamMember
from teamauth.models.user import User
from teamauth.schemas.auth import UserPublic
from teamauth.schemas.organization import (
    OrganizationCreate,
    OrganizationDetail,
    OrganizationResponse,
    OrganizationSummary,
    OrganizationUpdate,
    TeamMemberResponse,
)
from teamauth.services.org_gate import require_member, require_owner

logger = logging.getLogger("teamauth.organizations")

router = APIRouter()

SLUG_TAKEN = "Organization slug already taken"


async def list_members(db: AsyncSession, organization_id: str) -> List[TeamMember]:
    """Members ordered OWNER, ADMIN, MEMBER, then by join date."""
    result = await db.execute(
        select(TeamMember)
        .where(TeamMember.organization_id == organization_id)
        .order_by(TeamMember.joined_at)
    )
    members = list(result.scalars().all())
    members.sort(key=lambda member: ROLE_ORDER[member.role])
    return members


def _organization_fields(organization: Organization) -> dict:
    return OrganizationResponse.model_validate(organization).model_dump()


@router.get("", response_model=List[OrganizationSummary])
async def list_organizations(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    member_count = (
        select(TeamMember.organization_id, func.count(TeamMember.id).label("member_count"))
        .group_by(TeamMember.organization_id)
        .subquery()
    )
    result = await db.execute(
        select(Organization, TeamMember.role, member_count.c.member_count)
        .join(TeamMember, TeamMember.organization_id == Organization.id)
        .join(member_count, member_count.c.organization_id == Organization.id)
        .where(TeamMember.user_id == current_user.id)
        .order_by(Organization.created_at.desc())
    )

    return [
        OrganizationSummary(
            **_organization_fields(organization),
            role=role,
            member_count=count,
            owner=UserPublic.model_validate(organization.owner),
        )
        for organization, role, count in result.unique().all()
    ]


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """The creator becomes owner and first member."""
    existing = await db.execute(select(Organization.id).where(Organization.slug == payload.slug))
    if existing.scalar_one_or_none() is not None:
        raise ValidationError(SLUG_TAKEN)

    organization = Organization(name=payload.name, slug=payload.slug, owner_id=current_user.id)
    db.add(organization)
    await db.flush()
    db.add(TeamMember(user_id=current_user.id, organization_id=organization.id, role=Role.OWNER))
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race for the same slug
        await db.rollback()
        raise ValidationError(SLUG_TAKEN)

    await AuditLogger.log(
        db=db,
        action="org_create",
        user_id=current_user.id,
        organization_id=organization.id,
        resource_type="organization",
        resource_id=organization.id,
        details={"slug": organization.slug},
    )
    logger.info(f"Organization {organization.slug} created by {current_user.id}")
    return OrganizationResponse.model_validate(organization)


@router.get("/{organization_id}", response_model=OrganizationDetail)
async def read_organization(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    organization, membership = await require_member(db, organization_id, current_user.id)
    members = await list_members(db, organization_id)
    return OrganizationDetail(
        **_organization_fields(organization),
        role=membership.role,
        owner=UserPublic.model_validate(organization.owner),
        members=[TeamMemberResponse.model_validate(member) for member in members],
    )


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    payload: OrganizationUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    organization = await require_owner(db, organization_id, current_user.id)

    changes = payload.model_dump(exclude_unset=True)
    if "saml_entry_point" in changes and changes["saml_entry_point"] is not None:
        changes["saml_entry_point"] = str(changes["saml_entry_point"])
    if "name" in changes and changes["name"] is None:
        raise ValidationError("Name cannot be empty")

    for field, value in changes.items():
        setattr(organization, field, value)
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="org_update",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="organization",
        resource_id=organization_id,
        details={"fields": sorted(changes)},
    )
    return OrganizationResponse.model_validate(organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    organization = await require_owner(db, organization_id, current_user.id)

    await db.execute(delete(TeamMember).where(TeamMember.organization_id == organization_id))
    await db.execute(delete(OktaConfig).where(OktaConfig.organization_id == organization_id))
    await db.delete(organization)
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="org_delete",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="organization",
        resource_id=organization_id,
    )
    logger.info(f"Organization {organization_id} deleted by {current_user.id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
