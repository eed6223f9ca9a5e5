"""
Clearance Repository

Persistence for no due applications behind a small store contract, so the
registry can run against PostgreSQL in production and an in-memory store in
development and tests.

Design Principles:
- All queries are parameterized (no SQL injection)
- Single responsibility - only data access, no business logic
- Writes are conditional on the record's version (optimistic concurrency)
- Student uniqueness is enforced by the store, not by a prior read
- Backend failures surface as StoreUnavailableError
"""

import copy
from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import ApplicationStatus, NoDueApplication
from .schemas import Application


class DuplicateStudentError(ValueError):
    """Raised when a student already has an application."""

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student {student_id} already has an application")


class StaleApplicationError(ValueError):
    """Raised when a conditional write finds the record changed since it was read."""

    def __init__(self, application_id: UUID, expected_version: int):
        self.application_id = application_id
        self.expected_version = expected_version
        super().__init__(
            f"Application {application_id} changed since version {expected_version} was read"
        )


class StoreUnavailableError(Exception):
    """Raised when the storage backend cannot be reached."""


class ApplicationStore(Protocol):
    """Contract every application store implements."""

    async def get(self, application_id: UUID) -> Application | None: ...

    async def get_by_student(self, student_id: str) -> Application | None: ...

    async def insert(self, application: Application) -> Application:
        """Persist a new application. Raises DuplicateStudentError if the student has one."""
        ...

    async def put(self, application: Application, expected_version: int) -> Application:
        """
        Replace an application if its stored version still equals `expected_version`.

        Returns the stored record with its version incremented.
        Raises StaleApplicationError otherwise.
        """
        ...

    async def list_all(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Application]: ...

    async def count(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
    ) -> int: ...

    async def count_by_status(self) -> dict[ApplicationStatus, int]: ...


# Columns written on every update (the applicant snapshot never changes)
_MUTABLE_FIELDS = (
    "progress",
    "status",
    "can_reapply",
    "department_feedback",
    "last_reapply_date",
)


def _to_row(application: Application) -> dict:
    """Column values for an application; JSON columns get plain strings."""
    row = application.model_dump(exclude={"progress", "department_feedback"})
    json_fields = application.model_dump(
        mode="json", include={"progress", "department_feedback"}
    )
    row["progress"] = json_fields["progress"]
    row["department_feedback"] = json_fields["department_feedback"] or None
    return row


def _matches(application: Application, search: str) -> bool:
    needle = search.lower()
    return any(
        needle in value.lower()
        for value in (
            application.student_name,
            application.roll_number,
            application.email,
            application.department,
        )
    )


class SqlAlchemyApplicationStore:
    """PostgreSQL-backed store using async SQLAlchemy sessions."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def get(self, application_id: UUID) -> Application | None:
        try:
            async with self._session_maker() as db:
                row = await db.get(NoDueApplication, application_id)
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        return Application.model_validate(row) if row else None

    async def get_by_student(self, student_id: str) -> Application | None:
        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    select(NoDueApplication).where(NoDueApplication.student_id == student_id)
                )
                row = result.scalar_one_or_none()
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        return Application.model_validate(row) if row else None

    async def insert(self, application: Application) -> Application:
        """Insert a new row. The unique index on student_id settles racing submits."""
        try:
            async with self._session_maker() as db:
                await db.execute(insert(NoDueApplication).values(**_to_row(application)))
                await db.commit()
        except IntegrityError as e:
            raise DuplicateStudentError(application.student_id) from e
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        return application

    async def put(self, application: Application, expected_version: int) -> Application:
        row = _to_row(application)
        values = {field: row[field] for field in _MUTABLE_FIELDS}
        values["version"] = expected_version + 1

        try:
            async with self._session_maker() as db:
                result = await db.execute(
                    update(NoDueApplication)
                    .where(
                        NoDueApplication.id == application.id,
                        NoDueApplication.version == expected_version,
                    )
                    .values(**values)
                )
                if result.rowcount != 1:
                    await db.rollback()
                    raise StaleApplicationError(application.id, expected_version)
                await db.commit()
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e

        return application.model_copy(update={"version": expected_version + 1})

    def _filtered(self, stmt, status: ApplicationStatus | None, search: str | None):
        if status:
            stmt = stmt.where(NoDueApplication.status == status)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(
                or_(
                    NoDueApplication.student_name.ilike(pattern),
                    NoDueApplication.roll_number.ilike(pattern),
                    NoDueApplication.email.ilike(pattern),
                    NoDueApplication.department.ilike(pattern),
                )
            )
        return stmt

    async def list_all(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Application]:
        """List applications, newest submission first."""
        stmt = self._filtered(select(NoDueApplication), status, search)
        stmt = stmt.order_by(NoDueApplication.submission_date.desc()).offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                rows: Sequence[NoDueApplication] = result.scalars().all()
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        return [Application.model_validate(row) for row in rows]

    async def count(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
    ) -> int:
        stmt = self._filtered(select(func.count(NoDueApplication.id)), status, search)
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                return result.scalar_one()
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e

    async def count_by_status(self) -> dict[ApplicationStatus, int]:
        stmt = select(NoDueApplication.status, func.count(NoDueApplication.id)).group_by(
            NoDueApplication.status
        )
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                counts = {ApplicationStatus(status): total for status, total in result.all()}
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(str(e)) from e
        return {status: counts.get(status, 0) for status in ApplicationStatus}


class InMemoryApplicationStore:
    """
    Dict-backed store for local development and tests.

    Records are deep-copied in and out so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._records: dict[UUID, Application] = {}
        self._by_student: dict[str, UUID] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, application_id: UUID) -> Application | None:
        record = self._records.get(application_id)
        return copy.deepcopy(record) if record else None

    async def get_by_student(self, student_id: str) -> Application | None:
        application_id = self._by_student.get(student_id)
        return await self.get(application_id) if application_id else None

    async def insert(self, application: Application) -> Application:
        if application.student_id in self._by_student:
            raise DuplicateStudentError(application.student_id)
        self._records[application.id] = copy.deepcopy(application)
        self._by_student[application.student_id] = application.id
        return copy.deepcopy(application)

    async def put(self, application: Application, expected_version: int) -> Application:
        current = self._records.get(application.id)
        if current is None or current.version != expected_version:
            raise StaleApplicationError(application.id, expected_version)
        stored = application.model_copy(update={"version": expected_version + 1}, deep=True)
        self._records[application.id] = stored
        return copy.deepcopy(stored)

    def _select(self, status: ApplicationStatus | None, search: str | None) -> list[Application]:
        records = list(self._records.values())
        if status:
            records = [r for r in records if r.status == status]
        if search:
            records = [r for r in records if _matches(r, search)]
        return records

    async def list_all(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Application]:
        records = sorted(
            self._select(status, search), key=lambda r: r.submission_date, reverse=True
        )
        end = skip + limit if limit is not None else None
        return [copy.deepcopy(r) for r in records[skip:end]]

    async def count(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
    ) -> int:
        return len(self._select(status, search))

    async def count_by_status(self) -> dict[ApplicationStatus, int]:
        counts = {status: 0 for status in ApplicationStatus}
        for record in self._records.values():
            counts[record.status] += 1
        return counts
