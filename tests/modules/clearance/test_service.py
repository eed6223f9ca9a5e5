"""
Unit tests for the clearance registry.

These tests cover:
- Submission and the one-application-per-student rule
- Department decisions and status aggregation
- Certificate-ready and decision notifications
- Re-apply
- Read side (lookups, listing, statistics, certificate verification)
- Timeouts, concurrent writes and side-effect isolation
"""

import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest

from nodue.core.locks import LockUnavailableError
from nodue.modules.audit.models import AuditAction
from nodue.modules.clearance.models import ApplicationStatus, Department, Verdict
from nodue.modules.clearance.repository import StaleApplicationError, StoreUnavailableError
from nodue.modules.clearance.schemas import DecisionFeedback
from nodue.modules.clearance.service import (
    ApplicationFinalizedError,
    ApplicationNotFoundError,
    ApplicationServiceError,
    ClearanceRegistry,
    DuplicateApplicationError,
    InvalidDepartmentError,
    InvalidVerdictError,
    ReapplyNotAllowedError,
    StorageUnavailableError,
)

OTHER_DEPARTMENTS = ["hostel", "accounts", "lab", "sports"]


async def _partially_rejected(registry, candidate):
    """Scenario 4: library and accounts rejected, the rest approved."""
    application = await registry.submit(candidate)
    await registry.record_decision(application.id, "library", "rejected")
    await registry.record_decision(application.id, "hostel", "approved")
    await registry.record_decision(application.id, "accounts", "rejected")
    await registry.record_decision(application.id, "lab", "approved")
    return await registry.record_decision(application.id, "sports", "approved")


class TestSubmit:
    """Tests for ClearanceRegistry.submit."""

    @pytest.mark.asyncio
    async def test_submit_creates_pending_application(self, registry, sample_candidate):
        """Every department starts pending and the status is pending."""
        application = await registry.submit(sample_candidate)

        assert application.student_id == "STU001"
        assert application.progress == {d: Verdict.PENDING for d in Department}
        assert application.status == ApplicationStatus.PENDING
        assert application.can_reapply is False
        assert application.department_feedback == {}
        assert application.last_reapply_date is None
        assert application.college_name == "Sample University"

    @pytest.mark.asyncio
    async def test_submit_persists_application(self, registry, store, sample_candidate):
        application = await registry.submit(sample_candidate)

        stored = await store.get_by_student("STU001")
        assert stored is not None
        assert stored.id == application.id

    @pytest.mark.asyncio
    async def test_submit_is_audited(self, registry, audit_sink, sample_candidate):
        application = await registry.submit(sample_candidate)

        assert len(audit_sink.entries) == 1
        entry = audit_sink.entries[0]
        assert entry.action == AuditAction.APPLICATION_SUBMITTED.value
        assert entry.actor_id == "STU001"
        assert entry.target_id == str(application.id)

    @pytest.mark.asyncio
    async def test_second_submit_for_same_student_fails(self, registry, store, sample_candidate):
        """Only the first submission for a student succeeds."""
        first = await registry.submit(sample_candidate)

        for _ in range(3):
            with pytest.raises(DuplicateApplicationError) as exc_info:
                await registry.submit(sample_candidate)
            assert exc_info.value.status_code == 409
            assert exc_info.value.error_code == "DUPLICATE_APPLICATION"

        assert len(store) == 1
        assert (await store.get_by_student("STU001")).id == first.id

    @pytest.mark.asyncio
    async def test_concurrent_submits_create_one_application(
        self, registry, store, sample_candidate
    ):
        results = await asyncio.gather(
            *(registry.submit(sample_candidate) for _ in range(5)),
            return_exceptions=True,
        )

        created = [r for r in results if not isinstance(r, Exception)]
        duplicates = [r for r in results if isinstance(r, DuplicateApplicationError)]
        assert len(created) == 1
        assert len(duplicates) == 4
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_store_level_duplicate_maps_to_duplicate_error(
        self, registry, store, sample_candidate, make_application
    ):
        """A racing insert that loses on the unique constraint is still a duplicate."""
        await store.insert(make_application(student_id="STU001"))

        with patch.object(store, "get_by_student", AsyncMock(return_value=None)):
            with pytest.raises(DuplicateApplicationError):
                await registry.submit(sample_candidate)


class TestRecordDecision:
    """Tests for ClearanceRegistry.record_decision."""

    @pytest.mark.asyncio
    async def test_single_approval_moves_to_in_progress(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)

        updated = await registry.record_decision(application.id, "library", "approved")

        assert updated.progress[Department.LIBRARY] == Verdict.APPROVED
        assert updated.status == ApplicationStatus.IN_PROGRESS
        assert updated.can_reapply is False

    @pytest.mark.asyncio
    async def test_all_approved_fires_certificate_ready_once(
        self, registry, mock_notifier, sample_candidate
    ):
        application = await registry.submit(sample_candidate)
        await registry.record_decision(application.id, Department.LIBRARY, Verdict.APPROVED)

        for department in OTHER_DEPARTMENTS:
            updated = await registry.record_decision(application.id, department, "approved")

        assert updated.status == ApplicationStatus.APPROVED
        mock_notifier.notify_approved.assert_awaited_once_with(
            student_name="Asha Rao",
            student_email="asha.rao@example.edu",
            application_id=application.id,
        )
        assert mock_notifier.notify_decision.await_count == 5

    @pytest.mark.asyncio
    async def test_rerecording_approval_keeps_approved_without_events(
        self, registry, mock_notifier, audit_sink, sample_candidate
    ):
        """Once approved, re-recording approvals changes nothing and fires nothing."""
        application = await registry.submit(sample_candidate)
        for department in Department:
            await registry.record_decision(application.id, department, "approved")
        audit_count = len(audit_sink.entries)
        before = await registry.get(application.id)

        for department in Department:
            again = await registry.record_decision(application.id, department, "approved")
            assert again.status == ApplicationStatus.APPROVED

        after = await registry.get(application.id)
        assert after.version == before.version
        assert mock_notifier.notify_approved.await_count == 1
        assert mock_notifier.notify_decision.await_count == 5
        assert len(audit_sink.entries) == audit_count

    @pytest.mark.asyncio
    async def test_rejecting_approved_application_is_refused(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)
        for department in Department:
            await registry.record_decision(application.id, department, "approved")

        with pytest.raises(ApplicationFinalizedError) as exc_info:
            await registry.record_decision(application.id, "hostel", "rejected")

        assert exc_info.value.status_code == 409
        stored = await registry.get(application.id)
        assert stored.status == ApplicationStatus.APPROVED
        assert stored.progress[Department.HOSTEL] == Verdict.APPROVED

    @pytest.mark.asyncio
    async def test_partial_rejection_enables_reapply(self, registry, audit_sink, sample_candidate):
        updated = await _partially_rejected(registry, sample_candidate)

        assert updated.status == ApplicationStatus.PARTIALLY_REJECTED
        assert updated.can_reapply is True
        actions = [entry.action for entry in audit_sink.entries]
        assert actions.count(AuditAction.APPLICATION_PARTIALLY_REJECTED.value) == 1

    @pytest.mark.asyncio
    async def test_rejection_with_pending_departments_is_in_progress(
        self, registry, sample_candidate
    ):
        application = await registry.submit(sample_candidate)

        updated = await registry.record_decision(application.id, "library", "rejected")

        assert updated.status == ApplicationStatus.IN_PROGRESS
        assert updated.can_reapply is False

    @pytest.mark.asyncio
    async def test_feedback_is_stored_per_department(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)
        feedback = DecisionFeedback(
            reason="Two books overdue",
            officer_id="LIB01",
            officer_name="R. Iyer",
        )

        updated = await registry.record_decision(application.id, "library", "rejected", feedback)

        entry = updated.department_feedback[Department.LIBRARY]
        assert entry.verdict == Verdict.REJECTED
        assert entry.reason == "Two books overdue"
        assert entry.officer_name == "R. Iyer"
        assert entry.timestamp is not None

    @pytest.mark.asyncio
    async def test_latest_feedback_wins(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)
        await registry.record_decision(
            application.id, "library", "rejected", DecisionFeedback(reason="Overdue books")
        )

        updated = await registry.record_decision(
            application.id, "library", "approved", DecisionFeedback(reason="Books returned")
        )

        entry = updated.department_feedback[Department.LIBRARY]
        assert entry.verdict == Verdict.APPROVED
        assert entry.reason == "Books returned"

    @pytest.mark.asyncio
    async def test_unchanged_verdict_with_feedback_updates_quietly(
        self, registry, mock_notifier, sample_candidate
    ):
        application = await registry.submit(sample_candidate)
        await registry.record_decision(application.id, "lab", "rejected")
        mock_notifier.notify_decision.reset_mock()

        updated = await registry.record_decision(
            application.id, "lab", "rejected", DecisionFeedback(reason="Broken equipment")
        )

        assert updated.department_feedback[Department.LAB].reason == "Broken equipment"
        mock_notifier.notify_decision.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_decision_notification_carries_feedback(
        self, registry, mock_notifier, sample_candidate
    ):
        application = await registry.submit(sample_candidate)

        await registry.record_decision(
            application.id,
            "accounts",
            "rejected",
            DecisionFeedback(reason="Fees pending", officer_name="M. Das"),
        )

        mock_notifier.notify_decision.assert_awaited_once_with(
            student_name="Asha Rao",
            student_email="asha.rao@example.edu",
            application_id=application.id,
            department=Department.ACCOUNTS,
            verdict=Verdict.REJECTED,
            reason="Fees pending",
            officer_name="M. Das",
        )

    @pytest.mark.asyncio
    async def test_unknown_application(self, registry):
        with pytest.raises(ApplicationNotFoundError) as exc_info:
            await registry.record_decision(uuid4(), "library", "approved")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_department(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)

        with pytest.raises(InvalidDepartmentError) as exc_info:
            await registry.record_decision(application.id, "cafeteria", "approved")

        assert exc_info.value.error_code == "INVALID_DEPARTMENT"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("verdict", ["pending", "maybe", ""])
    async def test_invalid_verdict(self, registry, sample_candidate, verdict):
        application = await registry.submit(sample_candidate)

        with pytest.raises(InvalidVerdictError):
            await registry.record_decision(application.id, "library", verdict)

        stored = await registry.get(application.id)
        assert stored.progress[Department.LIBRARY] == Verdict.PENDING

    @pytest.mark.asyncio
    async def test_concurrent_decisions_all_land(self, registry, sample_candidate):
        """Parallel decisions on one application are serialized, none is lost."""
        application = await registry.submit(sample_candidate)

        await asyncio.gather(
            *(registry.record_decision(application.id, d, "approved") for d in Department)
        )

        stored = await registry.get(application.id)
        assert stored.progress == {d: Verdict.APPROVED for d in Department}
        assert stored.status == ApplicationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_stale_write_is_retried(self, registry, store, sample_candidate):
        application = await registry.submit(sample_candidate)
        real_put = store.put
        calls = []

        async def flaky_put(app, expected_version):
            calls.append(expected_version)
            if len(calls) == 1:
                raise StaleApplicationError(app.id, expected_version)
            return await real_put(app, expected_version)

        with patch.object(store, "put", side_effect=flaky_put):
            updated = await registry.record_decision(application.id, "library", "approved")

        assert calls == [1, 1]
        assert updated.progress[Department.LIBRARY] == Verdict.APPROVED
        assert updated.version == 2

    @pytest.mark.asyncio
    async def test_persistent_stale_writes_surface_as_unavailable(
        self, store, sample_candidate
    ):
        registry = ClearanceRegistry(store, max_write_attempts=2)
        application = await registry.submit(sample_candidate)
        stale = StaleApplicationError(application.id, 1)

        with patch.object(store, "put", AsyncMock(side_effect=stale)) as mock_put:
            with pytest.raises(StorageUnavailableError):
                await registry.record_decision(application.id, "library", "approved")

        assert mock_put.await_count == 2


class TestReapply:
    """Tests for ClearanceRegistry.reapply."""

    @pytest.mark.asyncio
    async def test_reapply_resets_only_rejected_departments(self, registry, sample_candidate):
        application = await _partially_rejected(registry, sample_candidate)

        updated = await registry.reapply(application.id)

        assert updated.progress == {
            Department.LIBRARY: Verdict.PENDING,
            Department.HOSTEL: Verdict.APPROVED,
            Department.ACCOUNTS: Verdict.PENDING,
            Department.LAB: Verdict.APPROVED,
            Department.SPORTS: Verdict.APPROVED,
        }
        assert updated.status == ApplicationStatus.IN_PROGRESS
        assert updated.can_reapply is False
        assert updated.last_reapply_date is not None

    @pytest.mark.asyncio
    async def test_reapply_twice_is_refused(self, registry, sample_candidate):
        application = await _partially_rejected(registry, sample_candidate)
        await registry.reapply(application.id)

        with pytest.raises(ReapplyNotAllowedError) as exc_info:
            await registry.reapply(application.id)

        assert exc_info.value.current_status == ApplicationStatus.IN_PROGRESS
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_reapply_from_pending_leaves_record_unchanged(
        self, registry, sample_candidate
    ):
        application = await registry.submit(sample_candidate)
        await registry.record_decision(application.id, "library", "rejected")
        before = await registry.get(application.id)

        with pytest.raises(ReapplyNotAllowedError):
            await registry.reapply(application.id)

        assert await registry.get(application.id) == before

    @pytest.mark.asyncio
    async def test_reapply_when_all_rejected_returns_to_in_progress(
        self, registry, sample_candidate
    ):
        application = await registry.submit(sample_candidate)
        for department in Department:
            await registry.record_decision(application.id, department, "rejected")

        updated = await registry.reapply(application.id)

        assert updated.progress == {d: Verdict.PENDING for d in Department}
        assert updated.status == ApplicationStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_reapply_then_approvals_complete_the_application(
        self, registry, mock_notifier, sample_candidate
    ):
        application = await _partially_rejected(registry, sample_candidate)
        await registry.reapply(application.id)

        await registry.record_decision(application.id, "library", "approved")
        updated = await registry.record_decision(application.id, "accounts", "approved")

        assert updated.status == ApplicationStatus.APPROVED
        mock_notifier.notify_approved.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reapply_is_audited(self, registry, audit_sink, sample_candidate):
        application = await _partially_rejected(registry, sample_candidate)

        await registry.reapply(application.id)

        entry = audit_sink.entries[-1]
        assert entry.action == AuditAction.APPLICATION_REAPPLIED.value
        assert entry.details == {"departments": ["library", "accounts"]}

    @pytest.mark.asyncio
    async def test_reapply_unknown_application(self, registry):
        with pytest.raises(ApplicationNotFoundError):
            await registry.reapply(uuid4())


class TestQueries:
    """Tests for the read-side operations."""

    @pytest.mark.asyncio
    async def test_get_by_student(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)

        found = await registry.get_by_student("STU001")

        assert found.id == application.id

    @pytest.mark.asyncio
    async def test_get_by_student_missing(self, registry):
        with pytest.raises(ApplicationNotFoundError) as exc_info:
            await registry.get_by_student("NOBODY")

        assert "NOBODY" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_can_student_apply(self, registry, sample_candidate):
        assert await registry.can_student_apply("STU001") is True

        await registry.submit(sample_candidate)

        assert await registry.can_student_apply("STU001") is False

    @pytest.mark.asyncio
    async def test_get_student_status(self, registry, sample_candidate):
        assert await registry.get_student_status("STU001") == "none"

        application = await registry.submit(sample_candidate)
        await registry.record_decision(application.id, "sports", "approved")

        assert await registry.get_student_status("STU001") == ApplicationStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_list_all_filters_and_searches(self, registry, sample_candidate):
        first = await registry.submit(sample_candidate)
        await registry.submit(
            sample_candidate.model_copy(
                update={
                    "student_id": "STU002",
                    "student_name": "Vikram Sen",
                    "roll_number": "21ME007",
                }
            )
        )
        await registry.record_decision(first.id, "library", "approved")

        assert len(await registry.list_all()) == 2
        in_progress = await registry.list_all(status=ApplicationStatus.IN_PROGRESS)
        assert [a.id for a in in_progress] == [first.id]
        assert [a.student_id for a in await registry.list_all(search="vikram")] == ["STU002"]
        assert await registry.count(search="21me") == 1

    @pytest.mark.asyncio
    async def test_statistics(self, registry, sample_candidate):
        first = await registry.submit(sample_candidate)
        await registry.submit(sample_candidate.model_copy(update={"student_id": "STU002"}))
        for department in Department:
            await registry.record_decision(first.id, department, "approved")

        stats = await registry.get_statistics()

        assert stats.total_applications == 2
        assert stats.approved == 1
        assert stats.pending == 1
        assert stats.partially_rejected == 0
        assert stats.departments == 5

    @pytest.mark.asyncio
    async def test_verify_certificate(self, registry, sample_candidate):
        application = await registry.submit(sample_candidate)

        result = await registry.verify_certificate(application.id)
        assert result.is_valid is False

        for department in Department:
            await registry.record_decision(application.id, department, "approved")

        result = await registry.verify_certificate(application.id)
        assert result.is_valid is True
        assert result.student_name == "Asha Rao"
        assert result.status == ApplicationStatus.APPROVED

    @pytest.mark.asyncio
    async def test_verify_unknown_certificate(self, registry):
        with pytest.raises(ApplicationNotFoundError):
            await registry.verify_certificate(uuid4())


class TestFailureHandling:
    """Timeouts, backend outages and side-effect failures."""

    @pytest.mark.asyncio
    async def test_store_timeout_is_retryable_unavailable(self, store, sample_candidate):
        registry = ClearanceRegistry(store, timeout_seconds=0.01)

        async def slow_get(student_id):
            await asyncio.sleep(1)

        with patch.object(store, "get_by_student", side_effect=slow_get):
            with pytest.raises(StorageUnavailableError) as exc_info:
                await registry.submit(sample_candidate)

        assert exc_info.value.retryable is True
        assert exc_info.value.status_code == 503
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self, store, sample_candidate):
        registry = ClearanceRegistry(store, timeout_seconds=10.0)

        async def slow_get(application_id):
            await asyncio.sleep(1)

        with patch.object(store, "get", side_effect=slow_get):
            with pytest.raises(StorageUnavailableError):
                await registry.get(uuid4(), timeout=0.01)

    @pytest.mark.asyncio
    async def test_explicit_zero_timeout_is_not_replaced_by_default(self, store):
        registry = ClearanceRegistry(store, timeout_seconds=10.0)

        async def slow_get(application_id):
            await asyncio.sleep(0.2)

        with patch.object(store, "get", side_effect=slow_get):
            with pytest.raises(StorageUnavailableError):
                await registry.get(uuid4(), timeout=0)

    @pytest.mark.asyncio
    async def test_store_outage_maps_to_unavailable(self, registry, store):
        with patch.object(
            store, "get", AsyncMock(side_effect=StoreUnavailableError("connection refused"))
        ):
            with pytest.raises(StorageUnavailableError) as exc_info:
                await registry.get(uuid4())

        assert isinstance(exc_info.value, ApplicationServiceError)
        assert exc_info.value.error_code == "STORAGE_UNAVAILABLE"

    @pytest.mark.asyncio
    async def test_lock_timeout_maps_to_unavailable(self, store, sample_candidate):
        class BusyLocks:
            @asynccontextmanager
            async def acquire(self, key, timeout=None):
                raise LockUnavailableError(key)
                yield

        registry = ClearanceRegistry(store, locks=BusyLocks())

        with pytest.raises(StorageUnavailableError):
            await registry.submit(sample_candidate)

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_decision(
        self, registry, store, mock_notifier, sample_candidate
    ):
        application = await registry.submit(sample_candidate)
        mock_notifier.notify_decision.side_effect = RuntimeError("mail server down")

        updated = await registry.record_decision(application.id, "library", "approved")

        assert updated.status == ApplicationStatus.IN_PROGRESS
        stored = await store.get(application.id)
        assert stored.progress[Department.LIBRARY] == Verdict.APPROVED

    @pytest.mark.asyncio
    async def test_hung_notification_does_not_block_decision(
        self, store, audit_sink, mock_notifier, sample_candidate
    ):
        async def never_returns(**kwargs):
            await asyncio.sleep(3600)

        mock_notifier.notify_decision.side_effect = never_returns
        registry = ClearanceRegistry(
            store, notifier=mock_notifier, audit=audit_sink, timeout_seconds=0.1
        )
        application = await registry.submit(sample_candidate)

        updated = await asyncio.wait_for(
            registry.record_decision(application.id, "library", "approved"), timeout=2
        )

        assert updated.progress[Department.LIBRARY] == Verdict.APPROVED
        assert [e.action for e in audit_sink.entries] == [
            AuditAction.APPLICATION_SUBMITTED,
            AuditAction.DEPARTMENT_APPROVED,
        ]

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_submit(self, store, sample_candidate):
        audit = AsyncMock()
        audit.record = AsyncMock(side_effect=RuntimeError("audit table locked"))
        registry = ClearanceRegistry(store, audit=audit)

        application = await registry.submit(sample_candidate)

        assert application.status == ApplicationStatus.PENDING
        audit.record.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_certificate_email_still_sent_when_audit_fails(
        self, store, mock_notifier, sample_candidate
    ):
        audit = AsyncMock()
        audit.record = AsyncMock(side_effect=RuntimeError("audit table locked"))
        registry = ClearanceRegistry(store, notifier=mock_notifier, audit=audit)
        application = await registry.submit(sample_candidate)

        for department in Department:
            await registry.record_decision(application.id, department, "approved")

        mock_notifier.notify_approved.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_registry_without_collaborators(self, store, sample_candidate):
        registry = ClearanceRegistry(store)
        application = await registry.submit(sample_candidate)

        for department in Department:
            updated = await registry.record_decision(application.id, department, "approved")

        assert updated.status == ApplicationStatus.APPROVED
