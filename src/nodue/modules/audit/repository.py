"""
Audit Repository

Storage for audit entries. The registry writes through the `AuditSink`
contract; the admin dashboard and the prune job read and trim through the
same implementations.
"""

import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import AuditAction, AuditLog
from .schemas import AuditEntry


class AuditUnavailableError(Exception):
    """The audit database could not be reached."""


class AuditSink(Protocol):
    async def record(
        self,
        actor_id: str,
        actor_name: str,
        action: AuditAction | str,
        target_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry: ...

    async def list_logs(
        self,
        action: str | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[AuditEntry]: ...

    async def count(self, action: str | None = None, search: str | None = None) -> int: ...

    async def prune(self, keep: int) -> int:
        """Delete all but the newest `keep` entries; returns how many were removed."""
        ...


def _action_text(action: AuditAction | str) -> str:
    return action.value if isinstance(action, AuditAction) else action


class SqlAlchemyAuditSink:
    """Audit entries in the `audit_logs` table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def record(
        self,
        actor_id: str,
        actor_name: str,
        action: AuditAction | str,
        target_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditLog(
            id=uuid.uuid4(),
            timestamp=datetime.now(UTC),
            actor_id=actor_id,
            actor_name=actor_name,
            action=_action_text(action),
            target_id=target_id,
            details=details,
        )
        try:
            async with self._session_maker() as db:
                db.add(entry)
                await db.commit()
        except (OperationalError, InterfaceError) as e:
            raise AuditUnavailableError(str(e)) from e
        return AuditEntry.model_validate(entry)

    def _filtered(self, stmt, action: str | None, search: str | None):
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    AuditLog.actor_name.ilike(pattern),
                    AuditLog.action.ilike(pattern),
                    AuditLog.target_id.ilike(pattern),
                )
            )
        return stmt

    async def list_logs(
        self,
        action: str | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[AuditEntry]:
        """Newest first."""
        stmt = (
            self._filtered(select(AuditLog), action, search)
            .order_by(AuditLog.timestamp.desc())
            .offset(skip)
            .limit(limit)
        )
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                rows = result.scalars().all()
        except (OperationalError, InterfaceError) as e:
            raise AuditUnavailableError(str(e)) from e
        return [AuditEntry.model_validate(row) for row in rows]

    async def count(self, action: str | None = None, search: str | None = None) -> int:
        stmt = self._filtered(select(func.count(AuditLog.id)), action, search)
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                return result.scalar_one()
        except (OperationalError, InterfaceError) as e:
            raise AuditUnavailableError(str(e)) from e

    async def prune(self, keep: int) -> int:
        newest = select(AuditLog.id).order_by(AuditLog.timestamp.desc()).limit(keep)
        try:
            async with self._session_maker() as db:
                result = await db.execute(delete(AuditLog).where(AuditLog.id.not_in(newest)))
                await db.commit()
                return result.rowcount or 0
        except (OperationalError, InterfaceError) as e:
            raise AuditUnavailableError(str(e)) from e


class InMemoryAuditSink:
    """Audit entries kept in a list, newest last."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def record(
        self,
        actor_id: str,
        actor_name: str,
        action: AuditAction | str,
        target_id: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            id=uuid.uuid4(),
            timestamp=datetime.now(UTC),
            actor_id=actor_id,
            actor_name=actor_name,
            action=_action_text(action),
            target_id=target_id,
            details=details,
        )
        self.entries.append(entry)
        return entry

    def _select(self, action: str | None, search: str | None) -> list[AuditEntry]:
        entries = list(reversed(self.entries))
        if action:
            entries = [e for e in entries if e.action == action]
        if search:
            needle = search.lower()
            entries = [
                e
                for e in entries
                if needle in e.actor_name.lower()
                or needle in e.action.lower()
                or needle in e.target_id.lower()
            ]
        return entries

    async def list_logs(
        self,
        action: str | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[AuditEntry]:
        return self._select(action, search)[skip : skip + limit]

    async def count(self, action: str | None = None, search: str | None = None) -> int:
        return len(self._select(action, search))

    async def prune(self, keep: int) -> int:
        removed = max(0, len(self.entries) - keep)
        if removed:
            self.entries = self.entries[removed:]
        return removed
