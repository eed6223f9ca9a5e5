"""
Clearance Schemas

Pydantic schemas for request validation, response serialization, and the
`Application` domain record passed between the registry and its store.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

# Re-use enums from models (they work with Pydantic too!)
from nodue.modules.clearance.models import ApplicationStatus, Department, Verdict


class ApplicationCreate(BaseModel):
    """Request body for POST /applications (the applicant snapshot)."""

    student_id: str = Field(..., min_length=1, max_length=100)
    student_name: str = Field(..., min_length=1, max_length=200)
    roll_number: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    department: str = Field(..., min_length=1, max_length=100)
    course: str = Field(..., min_length=1, max_length=100)
    year: str = Field(..., min_length=1, max_length=20)
    reason: str | None = Field(None, max_length=2000)
    college_name: str | None = Field(None, max_length=200)


class DecisionFeedback(BaseModel):
    """Optional context an officer attaches to a decision."""

    reason: str | None = Field(None, max_length=2000)
    officer_id: str | None = Field(None, max_length=100)
    officer_name: str | None = Field(None, max_length=200)


class DepartmentFeedback(BaseModel):
    """Stored feedback for one department; the latest decision wins."""

    verdict: Verdict
    reason: str | None = None
    officer_name: str | None = None
    timestamp: datetime


class Application(BaseModel):
    """
    A no due application as seen by the registry.

    Built from ORM rows (`from_attributes`) or plain dicts. `progress` must
    name every department exactly once; anything else is rejected here so a
    malformed record never reaches the aggregator.
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    student_name: str
    roll_number: str
    email: str
    department: str
    course: str
    year: str
    reason: str | None = None
    college_name: str | None = None
    submission_date: datetime
    progress: dict[Department, Verdict]
    status: ApplicationStatus
    can_reapply: bool = False
    department_feedback: dict[Department, DepartmentFeedback] = Field(default_factory=dict)
    last_reapply_date: datetime | None = None
    version: int = 1

    @field_validator("department_feedback", mode="before")
    @classmethod
    def empty_feedback(cls, value):
        return value or {}

    @model_validator(mode="after")
    def validate_progress(self) -> "Application":
        missing = set(Department) - set(self.progress)
        if missing:
            names = ", ".join(sorted(d.value for d in missing))
            raise ValueError(f"progress is missing departments: {names}")
        return self


class DecisionRequest(BaseModel):
    """Request body for POST /applications/{id}/decisions.

    Department and verdict stay plain strings so unknown values surface as
    INVALID_DEPARTMENT / INVALID_VERDICT rather than a generic 422.
    """

    department: str = Field(..., min_length=1, max_length=50)
    verdict: str = Field(..., min_length=1, max_length=20)
    reason: str | None = Field(None, max_length=2000)
    officer_id: str | None = Field(None, max_length=100)
    officer_name: str | None = Field(None, max_length=200)

    def feedback(self) -> DecisionFeedback | None:
        """Feedback to store alongside the verdict, if the officer supplied any."""
        if self.reason is None and self.officer_id is None and self.officer_name is None:
            return None
        return DecisionFeedback(
            reason=self.reason,
            officer_id=self.officer_id,
            officer_name=self.officer_name,
        )


class ApplicationResponse(BaseModel):
    """Public view of an application (the version token is internal)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    student_name: str
    roll_number: str
    email: str
    department: str
    course: str
    year: str
    reason: str | None = None
    college_name: str | None = None
    submission_date: datetime
    progress: dict[Department, Verdict]
    status: ApplicationStatus
    can_reapply: bool
    department_feedback: dict[Department, DepartmentFeedback] = Field(default_factory=dict)
    last_reapply_date: datetime | None = None


class StudentStatusResponse(BaseModel):
    """Response for GET /applications/students/{student_id}/status."""

    student_id: str
    status: ApplicationStatus | Literal["none"]
    can_apply: bool


class ApplicationListResponse(BaseModel):
    """Paginated list of applications for the admin dashboard."""

    items: list[ApplicationResponse]
    total: int
    skip: int
    limit: int | None


# ============================================
# Admin Dashboard Schemas
# ============================================


class StatisticsResponse(BaseModel):
    """Application counts for the admin dashboard."""

    total_applications: int
    pending: int
    in_progress: int
    approved: int
    rejected: int
    partially_rejected: int
    departments: int


class CertificateVerificationResponse(BaseModel):
    """Public certificate lookup result."""

    application_id: UUID
    student_name: str
    roll_number: str
    department: str
    course: str
    year: str
    college_name: str | None = None
    status: ApplicationStatus
    submission_date: datetime
    is_valid: bool
