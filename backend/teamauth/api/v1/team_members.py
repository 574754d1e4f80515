"""
Team membership management inside one organization.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.api.deps import get_current_user, get_db
from teamauth.api.v1.organizations import list_members
from teamauth.core.audit import AuditLogger
from teamauth.core.config import settings
from teamauth.core.exceptions import NotFound, ValidationError
from teamauth.models.organization import TeamMember
from teamauth.models.user import User
from teamauth.schemas.organization import (
    SamlInviteRequired,
    TeamMemberInvite,
    TeamMemberResponse,
    TeamMemberRoleUpdate,
)
from teamauth.services.identity import ensure_membership, find_user_by_email
from teamauth.services.org_gate import (
    check_removal,
    check_role_change,
    get_membership,
    require_admin,
    require_member,
)

logger = logging.getLogger("teamauth.team_members")

router = APIRouter()


async def get_member_in_organization(db: AsyncSession, organization_id: str, member_id: str) -> TeamMember:
    result = await db.execute(
        select(TeamMember).where(
            TeamMember.id == member_id,
            TeamMember.organization_id == organization_id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFound("Team member not found")
    return member


@router.get("", response_model=List[TeamMemberResponse])
async def read_members(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await require_member(db, organization_id, current_user.id)
    return await list_members(db, organization_id)


@router.post(
    "",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": SamlInviteRequired, "description": "Invitee must first sign in via SAML"}},
)
async def invite_member(
    organization_id: str,
    payload: TeamMemberInvite,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Add an existing user to the organization.

    Invitees without an account cannot be added directly. For SAML-enabled
    organizations the response points at the SAML login instead, which
    creates the membership on first sign-in. Nothing is written in that case.
    """
    organization, _ = await require_admin(db, organization_id, current_user.id)

    invitee = await find_user_by_email(db, payload.email)
    if invitee is None:
        if organization.saml_enabled:
            body = SamlInviteRequired(
                saml_login_url=f"{settings.API_PREFIX}/saml/login/{organization_id}",
                email=payload.email,
                role=payload.role,
            )
            return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(mode="json", by_alias=True))
        raise ValidationError("User not found. Please ask them to sign up first.")

    if await get_membership(db, invitee.id, organization_id) is not None:
        raise ValidationError("User is already a team member")

    member = await ensure_membership(db, invitee.id, organization_id, role=payload.role)
    await AuditLogger.log(
        db=db,
        action="member_invite",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="team_member",
        resource_id=member.id,
        details={"invitee_id": invitee.id, "role": payload.role.value},
    )

    await db.refresh(member, attribute_names=["user"])
    return member


@router.patch("/{member_id}", response_model=TeamMemberResponse)
async def update_member_role(
    organization_id: str,
    member_id: str,
    payload: TeamMemberRoleUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await require_admin(db, organization_id, current_user.id)
    member = await get_member_in_organization(db, organization_id, member_id)
    check_role_change(member, payload.role)

    previous = member.role
    member.role = payload.role
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="member_role_change",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="team_member",
        resource_id=member.id,
        details={"from": previous.value, "to": payload.role.value},
    )
    logger.info(f"Member {member.id} in {organization_id}: {previous.value} -> {payload.role.value}")
    return member


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    member_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    await require_admin(db, organization_id, current_user.id)
    member = await get_member_in_organization(db, organization_id, member_id)
    check_removal(member)

    removed_user_id = member.user_id
    await db.delete(member)
    await db.commit()

    await AuditLogger.log(
        db=db,
        action="member_remove",
        user_id=current_user.id,
        organization_id=organization_id,
        resource_type="team_member",
        resource_id=member_id,
        details={"removed_user_id": removed_user_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
