from teamauth.models.user import User
from teamauth.models.organization import Organization, Role, TeamMember
from teamauth.models.okta_config import OktaConfig

__all__ = ["User", "Organization", "Role", "TeamMember", "OktaConfig"]
