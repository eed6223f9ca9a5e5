"""
Audit Models

Database model for the audit trail.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from nodue.core.database import Base


class AuditAction(str, enum.Enum):
    """Actions recorded on the audit trail (stored as display text)."""

    APPLICATION_SUBMITTED = "Application Submitted"
    DEPARTMENT_APPROVED = "Department Approved"
    DEPARTMENT_REJECTED = "Department Rejected"
    APPLICATION_APPROVED = "Application Approved"
    APPLICATION_PARTIALLY_REJECTED = "Application Partially Rejected"
    APPLICATION_REAPPLIED = "Application Re-applied"


class AuditLog(Base):
    """One audit entry. Rows are never updated, only pruned."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    target_id: Mapped[str] = mapped_column(String(100), nullable=False)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_target_id", "target_id"),
    )
