"""
SAML 2.0 login, configured per organization.

python3-saml settings are built on demand from the organization row
(entry point, IdP issuer, IdP certificate), so enabling SAML for a new
organization needs no restart and no global strategy registry.
Signature and condition validation are done by python3-saml.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from onelogin.saml2.auth import OneLogin_Saml2_Auth
from onelogin.saml2.errors import OneLogin_Saml2_Error, OneLogin_Saml2_ValidationError
from starlette.concurrency import run_in_threadpool

from teamauth.core.config import settings
from teamauth.core.exceptions import InvalidAssertion, NotConfigured
from teamauth.core.sso.base import ExternalIdentity
from teamauth.models.organization import Organization

logger = logging.getLogger("teamauth.sso.saml")

NAMEID_FORMAT_EMAIL = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
BINDING_HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
BINDING_HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"

# IdPs disagree on attribute names
EMAIL_ATTRIBUTES = (
    "email",
    "Email",
    "emailAddress",
    "mail",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress",
    "urn:oid:0.9.2342.19200300.100.1.3",
)
DISPLAY_NAME_ATTRIBUTES = (
    "displayName",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name",
    "urn:oid:2.16.840.1.113730.3.1.241",
)
GIVEN_NAME_ATTRIBUTES = (
    "givenName",
    "firstName",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/givenname",
    "urn:oid:2.5.4.42",
)


@dataclass
class SamlProfile:
    """What python3-saml hands back for a valid response."""
    name_id: Optional[str]
    attributes: Dict[str, List[str]] = field(default_factory=dict)


def _first(attributes: Dict[str, List[str]], names: tuple) -> Optional[str]:
    for name in names:
        values = attributes.get(name) or []
        for value in values:
            if value and value.strip():
                return value.strip()
    return None


def profile_to_identity(profile: SamlProfile) -> ExternalIdentity:
    """
    Email comes from the email attribute, falling back to the NameID.

    Raises:
        InvalidAssertion: neither carries an email address
    """
    email = _first(profile.attributes, EMAIL_ATTRIBUTES)
    if not email and profile.name_id and "@" in profile.name_id:
        email = profile.name_id.strip()
    if not email:
        raise InvalidAssertion("No email found in SAML profile")

    name = (
        _first(profile.attributes, DISPLAY_NAME_ATTRIBUTES)
        or _first(profile.attributes, GIVEN_NAME_ATTRIBUTES)
        or email
    )
    return ExternalIdentity(
        provider="saml",
        subject=profile.name_id or email,
        email=email,
        name=name,
    )


class SamlAdapter:
    name = "saml"

    def __init__(
        self,
        base_url: str = settings.BASE_URL,
        strict: bool = settings.SAML_STRICT,
        debug: bool = settings.SAML_DEBUG,
    ):
        self.base_url = base_url.rstrip("/")
        self.strict = strict
        self.debug = debug

    @staticmethod
    def ensure_configured(organization: Organization) -> None:
        if not organization.saml_enabled:
            raise NotConfigured("SAML is not enabled for this organization")
        if not organization.saml_configured:
            raise NotConfigured("SAML configuration for this organization is incomplete")

    def acs_path(self, organization_id: str) -> str:
        return f"{settings.API_PREFIX}/saml/callback/{organization_id}"

    def acs_url(self, organization_id: str) -> str:
        return f"{self.base_url}{self.acs_path(organization_id)}"

    def build_settings(self, organization: Organization) -> Dict[str, Any]:
        return {
            "strict": self.strict,
            "debug": self.debug,
            "sp": {
                "entityId": organization.saml_issuer,
                "assertionConsumerService": {
                    "url": self.acs_url(organization.id),
                    "binding": BINDING_HTTP_POST,
                },
                "NameIDFormat": NAMEID_FORMAT_EMAIL,
                "x509cert": "",
                "privateKey": "",
            },
            "idp": {
                # Compared with the response Issuer in strict mode
                "entityId": organization.saml_idp_entity_id or organization.saml_entry_point,
                "singleSignOnService": {
                    "url": organization.saml_entry_point,
                    "binding": BINDING_HTTP_REDIRECT,
                },
                "x509cert": organization.saml_cert,
            },
            "security": {
                "authnRequestsSigned": False,
                "wantAssertionsSigned": True,
                "wantMessagesSigned": False,
                "wantNameId": False,
                "signatureAlgorithm": "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256",
                "digestAlgorithm": "http://www.w3.org/2001/04/xmlenc#sha256",
                "rejectUnsolicitedResponsesWithInResponseTo": False,
            },
        }

    def request_data(self, organization_id: str, post_data: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Request description for python3-saml, derived from BASE_URL so the
        Destination check holds behind reverse proxies.
        """
        parsed = urlsplit(self.base_url)
        https = parsed.scheme == "https"
        return {
            "https": "on" if https else "off",
            "http_host": parsed.hostname or "localhost",
            "server_port": str(parsed.port or (443 if https else 80)),
            "script_name": f"{parsed.path}{self.acs_path(organization_id)}",
            "get_data": {},
            "post_data": post_data or {},
        }

    def _auth(self, organization: Organization, post_data: Optional[Dict[str, str]] = None) -> OneLogin_Saml2_Auth:
        try:
            return OneLogin_Saml2_Auth(
                self.request_data(organization.id, post_data),
                self.build_settings(organization),
            )
        except OneLogin_Saml2_Error as e:
            logger.error(f"Invalid SAML settings for organization {organization.id}: {e}")
            raise NotConfigured("SAML configuration for this organization is invalid") from e

    def initiate_login(self, organization: Organization) -> str:
        self.ensure_configured(organization)
        return self._auth(organization).login()

    def _process_response(self, auth: OneLogin_Saml2_Auth) -> SamlProfile:
        """Validate the posted SAMLResponse; runs in a worker thread."""
        try:
            auth.process_response()
        except (OneLogin_Saml2_Error, OneLogin_Saml2_ValidationError) as e:
            raise InvalidAssertion(f"SAML response rejected: {e}") from e

        errors = auth.get_errors()
        if errors:
            reason = auth.get_last_error_reason()
            logger.warning(f"SAML response errors: {errors}, reason: {reason}")
            raise InvalidAssertion("SAML response rejected")
        if not auth.is_authenticated():
            raise InvalidAssertion("SAML response did not authenticate the user")

        return SamlProfile(name_id=auth.get_nameid(), attributes=auth.get_attributes() or {})

    async def complete_login(self, organization: Organization, post_data: Dict[str, str]) -> ExternalIdentity:
        self.ensure_configured(organization)
        if not post_data.get("SAMLResponse"):
            raise InvalidAssertion("Missing SAMLResponse")

        auth = self._auth(organization, post_data)
        profile = await run_in_threadpool(self._process_response, auth)
        return profile_to_identity(profile)


_saml_adapter = SamlAdapter()


def get_saml_adapter() -> SamlAdapter:
    return _saml_adapter
