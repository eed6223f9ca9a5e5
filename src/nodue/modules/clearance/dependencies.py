"""
Clearance Dependencies

Builds the registry and its collaborators from settings, and exposes the
instance stored on the app state to route handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from redis.asyncio import Redis

from nodue.core.config import Settings
from nodue.core.database import async_session_maker
from nodue.core.locks import LocalLockManager, RedisLockManager
from nodue.modules.audit.repository import AuditSink, InMemoryAuditSink, SqlAlchemyAuditSink
from nodue.modules.clearance.notifications import EmailNotificationDispatcher
from nodue.modules.clearance.repository import InMemoryApplicationStore, SqlAlchemyApplicationStore
from nodue.modules.clearance.service import ClearanceRegistry

logger = logging.getLogger(__name__)


def build_registry(settings: Settings, redis_client: Redis | None = None) -> ClearanceRegistry:
    """
    Wire a registry for the configured storage backend.

    Redis locks are used when enabled and Redis is connected; otherwise
    locking falls back to in-process locks (single worker only).
    """
    if settings.uses_memory_storage:
        logger.warning("Using in-memory storage; applications are lost on restart")
        store = InMemoryApplicationStore()
        audit = InMemoryAuditSink()
    else:
        store = SqlAlchemyApplicationStore(async_session_maker)
        audit = SqlAlchemyAuditSink(async_session_maker)

    if settings.use_redis_locks and redis_client is not None:
        locks = RedisLockManager(redis_client, lease_seconds=settings.lock_lease_seconds)
        logger.info("Using Redis locks for application writes")
    else:
        locks = LocalLockManager()
        logger.info("Using in-process locks for application writes")

    return ClearanceRegistry(
        store,
        notifier=EmailNotificationDispatcher(enabled=settings.email_notifications),
        audit=audit,
        locks=locks,
        timeout_seconds=settings.storage_timeout_seconds,
        lock_timeout_seconds=settings.lock_timeout_seconds,
        max_write_attempts=settings.max_write_attempts,
    )


def get_registry(request: Request) -> ClearanceRegistry:
    """FastAPI dependency returning the registry created at startup."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "SERVICE_UNAVAILABLE",
                "message": "The clearance service is starting up.",
            },
        )
    return registry


def get_audit_sink(request: Request) -> AuditSink:
    """FastAPI dependency returning the registry's audit sink."""
    registry = get_registry(request)
    if registry.audit is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "SERVICE_UNAVAILABLE",
                "message": "The audit trail is not configured.",
            },
        )
    return registry.audit
