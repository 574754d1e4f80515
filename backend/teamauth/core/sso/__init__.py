"""
Identity provider adapters.

- OIDC: Auth0 or WorkOS AuthKit, one per deployment (`oidc`)
- Okta OAuth2, configured per organization (`okta`)
- SAML 2.0, configured per organization (`saml`)
"""

from teamauth.core.sso.base import ExternalIdentity
from teamauth.core.sso.oidc import get_oidc_provider
from teamauth.core.sso.okta import OktaAdapter, get_okta_adapter
from teamauth.core.sso.saml import SamlAdapter, get_saml_adapter

__all__ = [
    "ExternalIdentity",
    "get_oidc_provider",
    "OktaAdapter",
    "get_okta_adapter",
    "SamlAdapter",
    "get_saml_adapter",
]
