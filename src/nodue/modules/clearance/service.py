"""
Clearance Service Layer

Business logic for no due applications. The `ClearanceRegistry` owns the
application lifecycle and orchestrates the store, the status aggregator,
notifications and the audit trail.

This module implements:
1. Submission:
   - One application per student (checked under a per-student lock and
     enforced again by the store's uniqueness guarantee)
   - Every department starts pending

2. Department Decisions:
   - Merge one verdict, recompute the status, persist conditionally on the
     record version (retrying on concurrent writes)
   - An approved application cannot be lowered again
   - Certificate-ready notification only on the transition into approved

3. Re-apply:
   - Allowed only from partially_rejected
   - Rejected departments go back to pending, approvals are kept

4. Read side:
   - Lookup by application or student, filtered listing, statistics,
     public certificate verification

Side effects (notifications, audit) run after the write is durable and
concurrently with each other, each bounded by the store timeout. Their
failures are logged, never raised.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Coroutine
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Literal, TypeVar
from uuid import UUID

from nodue.core.locks import LocalLockManager, LockManager, LockUnavailableError
from nodue.modules.audit.models import AuditAction
from nodue.modules.audit.repository import AuditSink
from nodue.modules.clearance.aggregation import (
    UnknownDepartmentError,
    aggregate_status,
    can_reapply,
    initial_progress,
    merge_verdict,
    parse_department,
    reset_rejected,
)
from nodue.modules.clearance.models import ApplicationStatus, Department, Verdict
from nodue.modules.clearance.notifications import NotificationDispatcher
from nodue.modules.clearance.repository import (
    ApplicationStore,
    DuplicateStudentError,
    StaleApplicationError,
    StoreUnavailableError,
)
from nodue.modules.clearance.schemas import (
    Application,
    ApplicationCreate,
    CertificateVerificationResponse,
    DecisionFeedback,
    DepartmentFeedback,
    StatisticsResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_NAME = "System"


class ApplicationServiceError(Exception):
    """Base exception for application service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class DuplicateApplicationError(ApplicationServiceError):
    """Raised when a student who already has an application submits again."""

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(
            message=f"Student {student_id} already has a no due application",
            error_code="DUPLICATE_APPLICATION",
            status_code=409,
        )


class ApplicationNotFoundError(ApplicationServiceError):
    """Raised when an application is not found."""

    def __init__(self, application_id: UUID | None = None, student_id: str | None = None):
        if application_id:
            message = f"Application {application_id} not found"
        elif student_id:
            message = f"No application found for student {student_id}"
        else:
            message = "Application not found"
        super().__init__(
            message=message,
            error_code="APPLICATION_NOT_FOUND",
            status_code=404,
        )


class InvalidDepartmentError(ApplicationServiceError):
    """Raised when a decision names a department that does not exist."""

    def __init__(self, department: object):
        self.department = department
        valid = ", ".join(d.value for d in Department)
        super().__init__(
            message=f"Unknown department '{department}'. Valid departments: {valid}",
            error_code="INVALID_DEPARTMENT",
            status_code=400,
        )


class InvalidVerdictError(ApplicationServiceError):
    """Raised when a decision is neither approved nor rejected."""

    def __init__(self, verdict: object):
        self.verdict = verdict
        super().__init__(
            message=f"Invalid verdict '{verdict}'. A decision must be 'approved' or 'rejected'",
            error_code="INVALID_VERDICT",
            status_code=400,
        )


class ReapplyNotAllowedError(ApplicationServiceError):
    """Raised when re-applying to an application that is not partially rejected."""

    def __init__(self, application_id: UUID, status: ApplicationStatus):
        self.application_id = application_id
        self.current_status = status
        super().__init__(
            message=(
                f"Re-apply is not allowed for application {application_id} "
                f"in status '{status.value}'. Expected state: partially_rejected"
            ),
            error_code="REAPPLY_NOT_ALLOWED",
            status_code=409,
        )


class ApplicationFinalizedError(ApplicationServiceError):
    """Raised when a decision would undo a fully approved application."""

    def __init__(self, application_id: UUID, department: Department):
        self.application_id = application_id
        self.department = department
        super().__init__(
            message=(
                f"Application {application_id} is fully approved; "
                f"{department.value} can no longer reject it"
            ),
            error_code="APPLICATION_FINALIZED",
            status_code=409,
        )


class StorageUnavailableError(ApplicationServiceError):
    """Raised when storage or locking did not answer in time. Safe to retry."""

    retryable = True
    retry_after_seconds = 1

    def __init__(self, message: str = "Application storage is temporarily unavailable"):
        super().__init__(
            message=message,
            error_code="STORAGE_UNAVAILABLE",
            status_code=503,
        )


def _parse_verdict(value: Verdict | str) -> Verdict:
    try:
        verdict = Verdict(value.strip().lower() if isinstance(value, str) else value)
    except ValueError as e:
        raise InvalidVerdictError(value) from e
    if verdict is Verdict.PENDING:
        raise InvalidVerdictError(value)
    return verdict


class ClearanceRegistry:
    """
    Lifecycle engine for no due applications.

    Collaborators are injected; the registry holds no application state of
    its own. Every mutation of one application (or one student's submission)
    happens under that key's lock, and every store call is bounded by a
    timeout.
    """

    def __init__(
        self,
        store: ApplicationStore,
        *,
        notifier: NotificationDispatcher | None = None,
        audit: AuditSink | None = None,
        locks: LockManager | None = None,
        timeout_seconds: float = 5.0,
        lock_timeout_seconds: float = 10.0,
        max_write_attempts: int = 3,
    ):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.locks = locks or LocalLockManager()
        self.timeout_seconds = timeout_seconds
        self.lock_timeout_seconds = lock_timeout_seconds
        self.max_write_attempts = max_write_attempts

    # ============================================
    # Internals
    # ============================================

    async def _call(self, operation: Awaitable[T], timeout: float | None) -> T:
        """Run one store call under a timeout, translating backend failures."""
        if timeout is None:
            timeout = self.timeout_seconds
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except TimeoutError as e:
            logger.error("Application store call timed out")
            raise StorageUnavailableError("Application storage did not respond in time") from e
        except StoreUnavailableError as e:
            logger.error(f"Application store unavailable: {e}")
            raise StorageUnavailableError() from e

    @asynccontextmanager
    async def _locked(self, key: str, timeout: float | None) -> AsyncIterator[None]:
        if timeout is None:
            timeout = self.lock_timeout_seconds
        try:
            async with self.locks.acquire(key, timeout=timeout):
                yield
        except LockUnavailableError as e:
            raise StorageUnavailableError(f"Could not lock {key}, please retry") from e

    async def _load(self, application_id: UUID, timeout: float | None) -> Application:
        application = await self._call(self.store.get(application_id), timeout)
        if not application:
            raise ApplicationNotFoundError(application_id)
        return application

    async def _emit(self, effects: list[tuple[str, Coroutine[Any, Any, Any]]]) -> None:
        """Run side effects concurrently under the store timeout; failures are logged only."""
        if not effects:
            return
        results = await asyncio.gather(
            *(asyncio.wait_for(effect, timeout=self.timeout_seconds) for _, effect in effects),
            return_exceptions=True,
        )
        for (label, _), result in zip(effects, results, strict=True):
            if isinstance(result, TimeoutError):
                logger.error(f"Side effect '{label}' timed out after {self.timeout_seconds}s")
            elif isinstance(result, Exception):
                logger.error(f"Side effect '{label}' failed: {result}", exc_info=result)

    def _audit_effect(
        self,
        actor_id: str,
        actor_name: str,
        action: AuditAction,
        target_id: UUID,
        details: dict[str, Any] | None = None,
    ) -> list[tuple[str, Coroutine[Any, Any, Any]]]:
        if self.audit is None:
            return []
        return [
            (
                f"audit:{action.value}",
                self.audit.record(
                    actor_id=actor_id,
                    actor_name=actor_name,
                    action=action,
                    target_id=str(target_id),
                    details=details,
                ),
            )
        ]

    # ============================================
    # Mutations
    # ============================================

    async def submit(
        self,
        candidate: ApplicationCreate,
        *,
        timeout: float | None = None,
    ) -> Application:
        """
        Create a student's application with every department pending.

        Raises:
            DuplicateApplicationError: If the student already has an application
            StorageUnavailableError: If storage or locking timed out
        """
        student_id = candidate.student_id
        logger.info(f"Processing no due submission for student {student_id}")

        async with self._locked(f"student:{student_id}", timeout):
            existing = await self._call(self.store.get_by_student(student_id), timeout)
            if existing:
                logger.warning(f"Duplicate application attempt for student {student_id}")
                raise DuplicateApplicationError(student_id)

            progress = initial_progress()
            application = Application(
                id=uuid.uuid4(),
                **candidate.model_dump(),
                submission_date=datetime.now(UTC),
                progress=progress,
                status=aggregate_status(progress),
                can_reapply=False,
            )

            try:
                stored = await self._call(self.store.insert(application), timeout)
            except DuplicateStudentError as e:
                logger.warning(f"Concurrent duplicate submission for student {student_id}")
                raise DuplicateApplicationError(student_id) from e

        logger.info(f"Created application {stored.id} for student {student_id}")

        await self._emit(
            self._audit_effect(
                actor_id=student_id,
                actor_name=stored.student_name,
                action=AuditAction.APPLICATION_SUBMITTED,
                target_id=stored.id,
                details={"roll_number": stored.roll_number, "department": stored.department},
            )
        )
        return stored

    async def record_decision(
        self,
        application_id: UUID,
        department: Department | str,
        verdict: Verdict | str,
        feedback: DecisionFeedback | None = None,
        *,
        timeout: float | None = None,
    ) -> Application:
        """
        Record one department's verdict and recompute the application status.

        Re-recording the verdict a department already gave changes nothing
        (feedback, if supplied, is still stored) and fires no events.

        Raises:
            InvalidDepartmentError: If `department` is not a known department
            InvalidVerdictError: If `verdict` is not approved or rejected
            ApplicationNotFoundError: If the application doesn't exist
            ApplicationFinalizedError: If the decision would lower an approved application
            StorageUnavailableError: If storage or locking timed out, or the
                write kept losing to concurrent updates
        """
        try:
            dept = parse_department(department)
        except UnknownDepartmentError as e:
            logger.warning(f"Decision for unknown department '{department}' on {application_id}")
            raise InvalidDepartmentError(department) from e
        decided = _parse_verdict(verdict)

        async with self._locked(f"application:{application_id}", timeout):
            for attempt in range(1, self.max_write_attempts + 1):
                current = await self._load(application_id, timeout)
                previous_verdict = current.progress[dept]

                if previous_verdict is decided and feedback is None:
                    logger.info(
                        f"{dept.value} verdict on {application_id} already {decided.value}, "
                        "nothing to update"
                    )
                    return current

                progress = merge_verdict(current.progress, dept, decided)
                status = aggregate_status(progress)

                if (
                    current.status is ApplicationStatus.APPROVED
                    and status is not ApplicationStatus.APPROVED
                ):
                    logger.warning(
                        f"Rejected {dept.value} decision on finalized application {application_id}"
                    )
                    raise ApplicationFinalizedError(application_id, dept)

                department_feedback = dict(current.department_feedback)
                if feedback is not None:
                    department_feedback[dept] = DepartmentFeedback(
                        verdict=decided,
                        reason=feedback.reason,
                        officer_name=feedback.officer_name,
                        timestamp=datetime.now(UTC),
                    )

                updated = current.model_copy(
                    update={
                        "progress": progress,
                        "status": status,
                        "can_reapply": can_reapply(status),
                        "department_feedback": department_feedback,
                    }
                )

                try:
                    stored = await self._call(self.store.put(updated, current.version), timeout)
                    break
                except StaleApplicationError:
                    logger.warning(
                        f"Concurrent update on {application_id} "
                        f"(attempt {attempt}/{self.max_write_attempts}), retrying"
                    )
            else:
                raise StorageUnavailableError(
                    f"Application {application_id} is being updated concurrently, please retry"
                )

        logger.info(
            f"{dept.value} {decided.value} application {application_id}: "
            f"{current.status.value} -> {stored.status.value}"
        )

        if previous_verdict is decided:
            return stored

        await self._emit(self._decision_effects(current, stored, dept, decided, feedback))
        return stored

    def _decision_effects(
        self,
        before: Application,
        after: Application,
        department: Department,
        verdict: Verdict,
        feedback: DecisionFeedback | None,
    ) -> list[tuple[str, Coroutine[Any, Any, Any]]]:
        reason = feedback.reason if feedback else None
        officer_id = (feedback.officer_id if feedback else None) or f"{department.value}-officer"
        officer_name = (feedback.officer_name if feedback else None) or (
            f"{department.value.capitalize()} Officer"
        )

        effects = self._audit_effect(
            actor_id=officer_id,
            actor_name=officer_name,
            action=(
                AuditAction.DEPARTMENT_APPROVED
                if verdict is Verdict.APPROVED
                else AuditAction.DEPARTMENT_REJECTED
            ),
            target_id=after.id,
            details={"department": department.value, "reason": reason},
        )

        if self.notifier is not None:
            effects.append(
                (
                    "notify:decision",
                    self.notifier.notify_decision(
                        student_name=after.student_name,
                        student_email=after.email,
                        application_id=after.id,
                        department=department,
                        verdict=verdict,
                        reason=reason,
                        officer_name=feedback.officer_name if feedback else None,
                    ),
                )
            )

        if after.status is before.status:
            return effects

        if after.status is ApplicationStatus.APPROVED:
            effects += self._audit_effect(
                actor_id=SYSTEM_ACTOR_ID,
                actor_name=SYSTEM_ACTOR_NAME,
                action=AuditAction.APPLICATION_APPROVED,
                target_id=after.id,
            )
            if self.notifier is not None:
                effects.append(
                    (
                        "notify:approved",
                        self.notifier.notify_approved(
                            student_name=after.student_name,
                            student_email=after.email,
                            application_id=after.id,
                        ),
                    )
                )
        elif after.status is ApplicationStatus.PARTIALLY_REJECTED:
            rejected = [d.value for d, v in after.progress.items() if v is Verdict.REJECTED]
            effects += self._audit_effect(
                actor_id=SYSTEM_ACTOR_ID,
                actor_name=SYSTEM_ACTOR_NAME,
                action=AuditAction.APPLICATION_PARTIALLY_REJECTED,
                target_id=after.id,
                details={"rejected_departments": rejected},
            )

        return effects

    async def reapply(
        self,
        application_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Application:
        """
        Send a partially rejected application back to the rejecting departments.

        Raises:
            ApplicationNotFoundError: If the application doesn't exist
            ReapplyNotAllowedError: If the application is not partially rejected
            StorageUnavailableError: If storage or locking timed out
        """
        async with self._locked(f"application:{application_id}", timeout):
            for attempt in range(1, self.max_write_attempts + 1):
                current = await self._load(application_id, timeout)

                if not (
                    current.can_reapply
                    and current.status is ApplicationStatus.PARTIALLY_REJECTED
                ):
                    logger.warning(
                        f"Re-apply refused for {application_id} in status {current.status.value}"
                    )
                    raise ReapplyNotAllowedError(application_id, current.status)

                updated = current.model_copy(
                    update={
                        "progress": reset_rejected(current.progress),
                        "status": ApplicationStatus.IN_PROGRESS,
                        "can_reapply": False,
                        "last_reapply_date": datetime.now(UTC),
                    }
                )

                try:
                    stored = await self._call(self.store.put(updated, current.version), timeout)
                    break
                except StaleApplicationError:
                    logger.warning(
                        f"Concurrent update on {application_id} "
                        f"(attempt {attempt}/{self.max_write_attempts}), retrying"
                    )
            else:
                raise StorageUnavailableError(
                    f"Application {application_id} is being updated concurrently, please retry"
                )

        reset = [d.value for d, v in current.progress.items() if v is Verdict.REJECTED]
        logger.info(f"Application {application_id} re-applied to: {', '.join(reset)}")

        await self._emit(
            self._audit_effect(
                actor_id=stored.student_id,
                actor_name=stored.student_name,
                action=AuditAction.APPLICATION_REAPPLIED,
                target_id=stored.id,
                details={"departments": reset},
            )
        )
        return stored

    # ============================================
    # Queries
    # ============================================

    async def get(self, application_id: UUID, *, timeout: float | None = None) -> Application:
        """
        Raises:
            ApplicationNotFoundError: If the application doesn't exist
        """
        return await self._load(application_id, timeout)

    async def get_by_student(self, student_id: str, *, timeout: float | None = None) -> Application:
        """
        Raises:
            ApplicationNotFoundError: If the student has no application
        """
        application = await self._call(self.store.get_by_student(student_id), timeout)
        if not application:
            raise ApplicationNotFoundError(student_id=student_id)
        return application

    async def list_all(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int | None = None,
        *,
        timeout: float | None = None,
    ) -> list[Application]:
        """Every application, newest first, optionally filtered by status or search text."""
        return await self._call(self.store.list_all(status, search, skip, limit), timeout)

    async def count(
        self,
        status: ApplicationStatus | None = None,
        search: str | None = None,
        *,
        timeout: float | None = None,
    ) -> int:
        return await self._call(self.store.count(status, search), timeout)

    async def can_student_apply(self, student_id: str, *, timeout: float | None = None) -> bool:
        """A student may apply only if they have no application yet."""
        existing = await self._call(self.store.get_by_student(student_id), timeout)
        return existing is None

    async def get_student_status(
        self,
        student_id: str,
        *,
        timeout: float | None = None,
    ) -> ApplicationStatus | Literal["none"]:
        existing = await self._call(self.store.get_by_student(student_id), timeout)
        return existing.status if existing else "none"

    async def get_statistics(self, *, timeout: float | None = None) -> StatisticsResponse:
        counts = await self._call(self.store.count_by_status(), timeout)
        return StatisticsResponse(
            total_applications=sum(counts.values()),
            pending=counts.get(ApplicationStatus.PENDING, 0),
            in_progress=counts.get(ApplicationStatus.IN_PROGRESS, 0),
            approved=counts.get(ApplicationStatus.APPROVED, 0),
            rejected=counts.get(ApplicationStatus.REJECTED, 0),
            partially_rejected=counts.get(ApplicationStatus.PARTIALLY_REJECTED, 0),
            departments=len(Department),
        )

    async def verify_certificate(
        self,
        application_id: UUID,
        *,
        timeout: float | None = None,
    ) -> CertificateVerificationResponse:
        """
        Public certificate check: a certificate is valid only for a fully
        approved application.

        Raises:
            ApplicationNotFoundError: If no application has this ID
        """
        application = await self._load(application_id, timeout)
        return CertificateVerificationResponse(
            application_id=application.id,
            student_name=application.student_name,
            roll_number=application.roll_number,
            department=application.department,
            course=application.course,
            year=application.year,
            college_name=application.college_name,
            status=application.status,
            submission_date=application.submission_date,
            is_valid=application.status is ApplicationStatus.APPROVED,
        )
