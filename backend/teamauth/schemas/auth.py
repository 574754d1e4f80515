from typing import Literal, Optional

from teamauth.schemas.base import CamelModel


class UserPublic(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None


class MeResponse(CamelModel):
    authenticated: bool
    user: Optional[UserPublic] = None
    auth_type: Optional[Literal["oidc", "okta", "saml"]] = None


class LogoutResponse(CamelModel):
    success: bool = True
    # Provider logout endpoint the browser should visit (Auth0)
    logout_url: Optional[str] = None
