import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from teamauth.db.base_class import Base
from teamauth.models.user import generate_id, utcnow


class Role(str, enum.Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# Listing order for team members
ROLE_ORDER = {Role.OWNER: 0, Role.ADMIN: 1, Role.MEMBER: 2}


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False)
    # Referenced by login URLs; not updatable once created
    slug = Column(String(50), unique=True, index=True, nullable=False)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # SAML (per-organization IdP)
    saml_enabled = Column(Boolean, default=False, nullable=False)
    saml_entry_point = Column(String(1024), nullable=True)
    saml_issuer = Column(String(512), nullable=True)
    saml_cert = Column(Text, nullable=True)
    # IdP entity id (response Issuer); defaults to the entry point
    saml_idp_entity_id = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", lazy="joined")

    @property
    def saml_configured(self) -> bool:
        return bool(
            self.saml_enabled
            and self.saml_entry_point
            and self.saml_issuer
            and self.saml_cert
        )

    def __repr__(self):
        return f"<Organization {self.slug}>"


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role = Column(Enum(Role, name="team_role"), default=Role.MEMBER, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_team_member_user_org"),
    )

    def __repr__(self):
        return f"<TeamMember {self.user_id}@{self.organization_id}: {self.role.value}>"
