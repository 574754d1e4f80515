from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

from pydantic import AnyHttpUrl, Field, field_validator

from teamauth.models.okta_config import OktaConfig
from teamauth.schemas.base import CamelModel

MASKED_SECRET = "***"


class OktaConfigUpsert(CamelModel):
    organization_id: str = Field(..., min_length=1)
    domain: str = Field(..., min_length=1, max_length=255)
    client_id: str = Field(..., min_length=1, max_length=255)
    client_secret: str = Field(..., min_length=1, max_length=512)
    redirect_uri: AnyHttpUrl
    is_active: bool = True

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str) -> str:
        """Accept "dev-123.okta.com" or "https://dev-123.okta.com/"; store the host."""
        value = value.strip()
        host = urlsplit(value if "://" in value else f"https://{value}").hostname
        if not host or "." not in host:
            raise ValueError("Domain must be an Okta host name such as dev-123456.okta.com")
        return host.lower()


class OktaConfigResponse(CamelModel):
    """Okta settings as returned to admins; the client secret is always masked."""
    id: str
    organization_id: str
    domain: str
    client_id: str
    client_secret: str = MASKED_SECRET
    redirect_uri: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_config(cls, config: OktaConfig) -> "OktaConfigResponse":
        return cls(
            id=config.id,
            organization_id=config.organization_id,
            domain=config.domain,
            client_id=config.client_id,
            redirect_uri=config.redirect_uri,
            is_active=config.is_active,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class OktaToggle(CamelModel):
    is_active: bool


class OktaToggleResponse(CamelModel):
    success: bool = True
    is_active: bool


class OrganizationRef(CamelModel):
    id: str
    name: str
    slug: str


class OktaPublicSettings(CamelModel):
    organization_id: str
    domain: str
    client_id: str
    redirect_uri: str
    is_active: bool


class OktaPublicConfig(CamelModel):
    """Unauthenticated lookup used by the organization login page."""
    organization: OrganizationRef
    okta_config: OktaPublicSettings
