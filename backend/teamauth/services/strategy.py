"""
Strategy resolver: decides which login produced the current session.

Organization logins stored in the session win over the generic OIDC login,
SAML first, then Okta. Only one source is reported per request.
"""

from dataclasses import dataclass
from typing import Optional

from teamauth.core.session import SessionData


@dataclass
class AuthUser:
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


@dataclass
class AuthResult:
    authenticated: bool
    auth_type: Optional[str] = None  # "saml" | "okta" | "oidc"
    user: Optional[AuthUser] = None
    organization_id: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "AuthResult":
        return cls(authenticated=False)


def resolve(session: SessionData) -> AuthResult:
    identity = session.identity

    for auth_type in ("saml", "okta"):
        if identity is not None and identity.auth_type == auth_type:
            return AuthResult(
                authenticated=True,
                auth_type=auth_type,
                user=AuthUser(
                    id=identity.id,
                    email=identity.email,
                    name=identity.name,
                    picture=identity.picture,
                ),
                organization_id=identity.organization_id,
            )

    if session.oidc is not None:
        return AuthResult(
            authenticated=True,
            auth_type="oidc",
            user=AuthUser(
                id=session.oidc.user_id,
                email=session.oidc.email,
                name=session.oidc.name,
                picture=session.oidc.picture,
            ),
        )

    return AuthResult.anonymous()
