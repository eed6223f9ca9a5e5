"""
Status Aggregation

Pure functions that turn the five department verdicts into one application
status and implement the re-apply reset. No I/O; every mutation path in the
registry goes through these.

Aggregation rules (first match wins):
1. every department approved          -> approved
2. any department rejected:
   a. no department still pending     -> partially_rejected
   b. otherwise                       -> in_progress
3. any department approved            -> in_progress
4. otherwise                          -> pending
"""

from collections.abc import Mapping

from nodue.modules.clearance.models import ApplicationStatus, Department, Verdict

DEPARTMENTS: tuple[Department, ...] = tuple(Department)


class UnknownDepartmentError(ValueError):
    """Raised when a department key is not one of the fixed departments."""

    def __init__(self, department: object):
        self.department = department
        valid = ", ".join(d.value for d in DEPARTMENTS)
        super().__init__(f"Unknown department '{department}' (expected one of: {valid})")


class IncompleteProgressError(ValueError):
    """Raised when a progress mapping does not cover every department."""


Progress = Mapping[Department, Verdict]


def initial_progress() -> dict[Department, Verdict]:
    """Progress for a new application: every department pending."""
    return {department: Verdict.PENDING for department in DEPARTMENTS}


def parse_department(value: Department | str) -> Department:
    """Resolve a department key, case-insensitively."""
    if isinstance(value, Department):
        return value
    try:
        return Department(str(value).strip().lower())
    except ValueError as e:
        raise UnknownDepartmentError(value) from e


def _verdicts(progress: Progress) -> list[Verdict]:
    try:
        return [Verdict(progress[department]) for department in DEPARTMENTS]
    except KeyError as e:
        raise IncompleteProgressError(f"progress has no verdict for department {e}") from e


def aggregate_status(progress: Progress) -> ApplicationStatus:
    """
    Compute the overall status for a progress mapping.

    Raises:
        IncompleteProgressError: If a department is missing from `progress`
    """
    verdicts = _verdicts(progress)

    if all(v is Verdict.APPROVED for v in verdicts):
        return ApplicationStatus.APPROVED

    if Verdict.REJECTED in verdicts:
        if Verdict.PENDING not in verdicts:
            return ApplicationStatus.PARTIALLY_REJECTED
        return ApplicationStatus.IN_PROGRESS

    if Verdict.APPROVED in verdicts:
        return ApplicationStatus.IN_PROGRESS

    return ApplicationStatus.PENDING


def merge_verdict(
    progress: Progress,
    department: Department | str,
    verdict: Verdict,
) -> dict[Department, Verdict]:
    """Return a copy of `progress` with one department's verdict replaced."""
    merged = dict(progress)
    merged[parse_department(department)] = verdict
    return merged


def reset_rejected(progress: Progress) -> dict[Department, Verdict]:
    """
    Return a copy of `progress` with every rejected department back to pending.

    Approved departments are untouched. The caller is responsible for
    checking the application is partially rejected first.
    """
    reset = {}
    for department, verdict in progress.items():
        verdict = Verdict(verdict)
        reset[parse_department(department)] = (
            Verdict.PENDING if verdict is Verdict.REJECTED else verdict
        )
    return reset


def can_reapply(status: ApplicationStatus) -> bool:
    """Whether an application in `status` may be re-applied."""
    return status is ApplicationStatus.PARTIALLY_REJECTED
