"""
Audit Background Jobs

Keeps the audit trail bounded: only the newest `audit_log_retention` entries
are retained. The job is idempotent and safe to trigger manually.
"""

import logging
from typing import Any

from apscheduler.triggers.interval import IntervalTrigger

from nodue.core.config import settings
from nodue.core.scheduler import register_job

from .repository import AuditSink

logger = logging.getLogger(__name__)

JOB_ID_PRUNE_LOGS = "audit_prune_logs"


async def prune_audit_logs(sink: AuditSink, keep: int) -> dict[str, Any]:
    """Trim the audit trail to the newest `keep` entries."""
    logger.info(f"Starting audit log prune (keeping newest {keep})")

    try:
        removed = await sink.prune(keep)
    except Exception as e:
        logger.error(f"Audit log prune failed: {e}", exc_info=True)
        return {"job": JOB_ID_PRUNE_LOGS, "status": "failed", "error": str(e)}

    logger.info(f"Audit log prune complete: removed {removed} entries")
    return {"job": JOB_ID_PRUNE_LOGS, "status": "completed", "removed": removed}


def register_audit_jobs(sink: AuditSink) -> None:
    """Register the audit prune job with the scheduler."""

    async def _prune() -> dict[str, Any]:
        return await prune_audit_logs(sink, settings.audit_log_retention)

    register_job(
        JOB_ID_PRUNE_LOGS,
        _prune,
        IntervalTrigger(minutes=settings.audit_prune_interval_minutes),
    )
    logger.info(f"Registered audit job: {JOB_ID_PRUNE_LOGS}")
