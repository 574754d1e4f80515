"""
Shared pieces for the identity provider adapters.

Every adapter exposes two steps to the HTTP layer: `initiate_login(...)`
returning the URL to redirect the browser to, and `complete_login(...)`
returning an ExternalIdentity. Protocol work (URL construction, token
exchange, signature checks) is delegated to authlib and python3-saml.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from authlib.integrations.base_client import OAuthError

from teamauth.core.config import settings
from teamauth.core.exceptions import AuthenticationError, UpstreamUnavailable

logger = logging.getLogger("teamauth.sso")

OIDC_SCOPES = "openid profile email"


@dataclass
class ExternalIdentity:
    """Normalized profile asserted by an identity provider."""
    provider: str
    subject: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


def http_client_options(transport: Optional[httpx.AsyncBaseTransport] = None) -> dict[str, Any]:
    """httpx client options with the bounded upstream timeout."""
    options: dict[str, Any] = {"timeout": httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS)}
    if transport is not None:
        options["transport"] = transport
    return options


@contextmanager
def upstream_errors(provider: str):
    """
    Translate transport and protocol failures into the auth error taxonomy.

    Timeouts and network errors become UpstreamUnavailable (safe to retry the
    whole login), rejected codes and 4xx responses become AuthenticationError.
    """
    try:
        yield
    except httpx.TimeoutException as e:
        logger.warning(f"{provider}: upstream timeout: {e!r}")
        raise UpstreamUnavailable(f"{provider} did not respond in time") from e
    except httpx.TransportError as e:
        logger.warning(f"{provider}: upstream transport error: {e!r}")
        raise UpstreamUnavailable(f"Could not reach {provider}") from e
    except httpx.HTTPStatusError as e:
        status_code = e.response.status_code
        if status_code >= 500:
            logger.warning(f"{provider}: upstream returned {status_code}")
            raise UpstreamUnavailable(f"{provider} is unavailable") from e
        logger.info(f"{provider}: upstream rejected request with {status_code}")
        raise AuthenticationError() from e
    except OAuthError as e:
        logger.info(f"{provider}: token exchange rejected: {e.error} {e.description or ''}".rstrip())
        raise AuthenticationError() from e
    except ValueError as e:
        # Malformed JSON from the provider
        logger.warning(f"{provider}: unreadable upstream response: {e}")
        raise AuthenticationError() from e


def require_email(provider: str, profile: dict[str, Any]) -> str:
    email = profile.get("email")
    if not email:
        raise AuthenticationError(f"{provider} did not return an email address")
    return email
