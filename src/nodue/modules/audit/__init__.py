"""
Audit Module

Append-only trail of clearance activity (submissions, decisions,
re-applications), listed on the admin dashboard and trimmed to the most
recent entries by a background job.

API Endpoints:
- GET /admin/audit-logs - List audit entries (action/search filters, paginated)

Background Jobs (via APScheduler):
- audit_prune_logs: keeps the newest `audit_log_retention` entries
"""

from .jobs import register_audit_jobs
from .repository import (
    AuditSink,
    AuditUnavailableError,
    InMemoryAuditSink,
    SqlAlchemyAuditSink,
)

__all__ = [
    "AuditSink",
    "AuditUnavailableError",
    "InMemoryAuditSink",
    "SqlAlchemyAuditSink",
    "register_audit_jobs",
]
