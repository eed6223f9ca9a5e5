"""
Clearance Models

Database model for no due applications plus the department, verdict and
status enums shared by every layer. Enum values are stored as the lowercase
strings the rest of the system already exchanges.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from nodue.core.database import Base


class Department(str, enum.Enum):
    """Departments that must each clear a student."""

    LIBRARY = "library"
    HOSTEL = "hostel"
    ACCOUNTS = "accounts"
    LAB = "lab"
    SPORTS = "sports"


class Verdict(str, enum.Enum):
    """One department's decision on an application."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApplicationStatus(str, enum.Enum):
    """Overall status of an application, derived from the five verdicts."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    # Never produced by the aggregator; kept so stored records stay readable
    REJECTED = "rejected"
    PARTIALLY_REJECTED = "partially_rejected"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class NoDueApplication(Base):
    """
    A student's no due clearance application.

    One row per student. `progress` maps each department to its verdict and
    `status` is always the aggregate of `progress`.
    """

    __tablename__ = "no_due_applications"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Applicant snapshot (immutable after submission)
    student_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    student_name: Mapped[str] = mapped_column(String(200), nullable=False)
    roll_number: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    course: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    college_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    submission_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Clearance state
    # {"library": "pending", "hostel": "approved", ...}
    progress: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(
            ApplicationStatus,
            name="no_due_application_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ApplicationStatus.PENDING,
    )
    can_reapply: Mapped[bool] = mapped_column(default=False, nullable=False)
    # {"library": {"verdict": ..., "reason": ..., "officer_name": ..., "timestamp": ...}}
    department_feedback: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    last_reapply_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Optimistic concurrency token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_no_due_applications_status", "status"),
        Index("ix_no_due_applications_roll_number", "roll_number"),
    )
