"""
Audit trail for authentication and organization changes.

Security-relevant events (forged callbacks, rejected assertions, cross-provider
account links) are written here in addition to the application log.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teamauth.db.base_class import Base

logger = logging.getLogger("teamauth.audit")


class AuditLog(Base):
    """Audit log entry"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    user_id = Column(String(36), index=True)
    organization_id = Column(String(36), index=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. "login", "member_invite"
    resource_type = Column(String(50))  # e.g. "organization", "team_member"
    resource_id = Column(String(36))
    status = Column(String(20), nullable=False, default="success")  # success | failure
    ip_address = Column(String(64))
    details = Column(Text)  # JSON
    error_message = Column(Text)

    __table_args__ = (
        Index("idx_audit_user_action", "user_id", "action"),
        Index("idx_audit_org_timestamp", "organization_id", "timestamp"),
    )

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.user_id} - {self.action}>"


class AuditLogger:
    """Creates audit log entries. Audit failures never break the calling flow."""

    @staticmethod
    async def log(
        db: AsyncSession,
        action: str,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        status: str = "success",
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry and commit it.

        Args:
            db: Database session
            action: Action performed (e.g. "login", "org_delete")
            user_id: Acting user, if known
            organization_id: Organization the action applies to
            resource_type: Type of resource affected
            resource_id: ID of the affected resource
            status: "success" or "failure"
            ip_address: Client IP address
            details: Additional data, stored as JSON
            error_message: Error message if the action failed

        Returns:
            The AuditLog instance (possibly unsaved if the write failed)
        """
        entry = AuditLog(
            user_id=user_id,
            organization_id=organization_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            status=status,
            ip_address=ip_address,
            details=json.dumps(details, default=str) if details else None,
            error_message=error_message,
        )

        try:
            db.add(entry)
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning(f"Audit log write skipped due to DB error: {exc}")

        return entry

    @staticmethod
    async def log_login(
        db: AsyncSession,
        user_id: str,
        provider: str,
        organization_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        return await AuditLogger.log(
            db=db,
            action="login",
            user_id=user_id,
            organization_id=organization_id,
            resource_type="user",
            resource_id=user_id,
            ip_address=ip_address,
            details={"provider": provider},
        )

    @staticmethod
    async def log_login_failure(
        db: AsyncSession,
        provider: str,
        error_code: str,
        error_message: str,
        organization_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuditLog:
        """Record a rejected login; forged state and bad assertions land here too."""
        await db.rollback()
        return await AuditLogger.log(
            db=db,
            action="login_failed",
            organization_id=organization_id,
            status="failure",
            ip_address=ip_address,
            details={"provider": provider, "error": error_code},
            error_message=error_message,
        )
