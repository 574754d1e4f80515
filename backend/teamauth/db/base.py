# Import all the models, so that Base has them before create_all() runs
from teamauth.db.base_class import Base  # noqa

from teamauth.models.user import User  # noqa
from teamauth.models.organization import Organization, TeamMember  # noqa
from teamauth.models.okta_config import OktaConfig  # noqa
from teamauth.core.audit import AuditLog  # noqa
