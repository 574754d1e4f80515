"""
Per-organization Okta OAuth2 settings.

The client secret is encrypted at rest and never leaves the API.
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from teamauth.core.encryption import EncryptedString
from teamauth.db.base_class import Base
from teamauth.models.user import generate_id, utcnow


class OktaConfig(Base):
    __tablename__ = "okta_configs"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(
        String(36), ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    domain = Column(String(255), nullable=False)
    client_id = Column(String(255), nullable=False)
    client_secret = Column(EncryptedString(1024), nullable=False)
    redirect_uri = Column(String(1024), nullable=False)
    # Login only proceeds while active
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    organization = relationship("Organization", lazy="joined")

    def __repr__(self):
        return f"<OktaConfig {self.organization_id}: {self.domain}>"
