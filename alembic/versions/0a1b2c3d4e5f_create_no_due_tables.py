"""create no due tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 12:00:00.000000

This migration:
1. Creates the no_due_application_status enum type
2. Creates the no_due_applications table (one row per student)
3. Creates the audit_logs table
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the application and audit tables."""
    status_enum = postgresql.ENUM(
        "pending",
        "in_progress",
        "approved",
        "rejected",
        "partially_rejected",
        name="no_due_application_status",
        create_type=False,  # Created explicitly with checkfirst
    )
    status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "no_due_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        # Applicant snapshot
        sa.Column("student_id", sa.String(length=100), nullable=False),
        sa.Column("student_name", sa.String(length=200), nullable=False),
        sa.Column("roll_number", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("department", sa.String(length=100), nullable=False),
        sa.Column("course", sa.String(length=100), nullable=False),
        sa.Column("year", sa.String(length=20), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("college_name", sa.String(length=200), nullable=True),
        sa.Column("submission_date", sa.DateTime(timezone=True), nullable=False),
        # Clearance state
        sa.Column("progress", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("status", status_enum, nullable=False),
        sa.Column("can_reapply", sa.Boolean(), nullable=False),
        sa.Column("department_feedback", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("last_reapply_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        # Audit timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", name="uq_no_due_applications_student_id"),
    )
    op.create_index("ix_no_due_applications_status", "no_due_applications", ["status"])
    op.create_index("ix_no_due_applications_roll_number", "no_due_applications", ["roll_number"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=100), nullable=False),
        sa.Column("actor_name", sa.String(length=200), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_id", sa.String(length=100), nullable=False),
        sa.Column("details", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])
    op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"])


def downgrade() -> None:
    """Drop the application and audit tables."""
    op.drop_index("ix_audit_logs_target_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_timestamp", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_no_due_applications_roll_number", table_name="no_due_applications")
    op.drop_index("ix_no_due_applications_status", table_name="no_due_applications")
    op.drop_table("no_due_applications")

    sa.Enum(name="no_due_application_status").drop(op.get_bind(), checkfirst=True)
