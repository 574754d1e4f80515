import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from teamauth.db.base_class import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """
    Local user record. One row per email address, shared by every provider
    that asserts that email.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    # "<provider>|<subject>" of the provider that first created the user
    external_id = Column(String(512), nullable=False, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    picture = Column(String(1024), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def provider(self) -> str:
        return self.external_id.split("|", 1)[0] if "|" in self.external_id else ""

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
