from datetime import datetime
from typing import List, Optional

from pydantic import AnyHttpUrl, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from teamauth.models.organization import Role
from teamauth.schemas.auth import UserPublic
from teamauth.schemas.base import CamelModel

SLUG_PATTERN = r"^[a-z0-9-]+$"


# ============ Organization Schemas ============

class OrganizationCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=3, max_length=50, pattern=SLUG_PATTERN)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name must not be blank")
        return value


class OrganizationUpdate(CamelModel):
    """Slug is immutable once created, so it is not accepted here."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    saml_enabled: Optional[bool] = None
    saml_entry_point: Optional[AnyHttpUrl] = None
    saml_issuer: Optional[str] = Field(None, max_length=512)
    saml_cert: Optional[str] = None
    saml_idp_entity_id: Optional[str] = Field(None, max_length=512)


class OrganizationResponse(CamelModel):
    id: str
    name: str
    slug: str
    owner_id: str
    saml_enabled: bool
    saml_entry_point: Optional[str] = None
    saml_issuer: Optional[str] = None
    saml_cert: Optional[str] = None
    saml_idp_entity_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ============ Team Member Schemas ============

class TeamMemberResponse(CamelModel):
    id: str
    user_id: str
    organization_id: str
    role: Role
    joined_at: datetime
    user: UserPublic


class TeamMemberInvite(CamelModel):
    email: EmailStr
    role: Role = Role.MEMBER

    @field_validator("role")
    @classmethod
    def _no_owner_invites(cls, value: Role) -> Role:
        if value == Role.OWNER:
            raise ValueError("Role must be ADMIN or MEMBER")
        return value


class TeamMemberRoleUpdate(CamelModel):
    role: Role


class SamlInviteRequired(CamelModel):
    """Returned instead of a membership when the invitee must first sign in via SAML."""
    message: str = "SAML authentication required"
    saml_login_url: str
    email: str
    role: Role


# ============ Composite Responses ============

class OrganizationSummary(OrganizationResponse):
    role: Role
    member_count: int
    owner: UserPublic


class OrganizationDetail(OrganizationResponse):
    role: Role
    owner: UserPublic
    members: List[TeamMemberResponse]
