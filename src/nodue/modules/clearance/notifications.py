"""
Clearance Notifications

Outbound notifications triggered by clearance decisions. The registry only
depends on the `NotificationDispatcher` contract; the email implementation
sends through Resend.
"""

import logging
from typing import Protocol
from uuid import UUID

from nodue.core.email import send_certificate_ready, send_department_decision

from .models import Department, Verdict

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    async def notify_approved(
        self,
        student_name: str,
        student_email: str,
        application_id: UUID,
    ) -> None:
        """Every department approved: the certificate is ready."""
        ...

    async def notify_decision(
        self,
        student_name: str,
        student_email: str,
        application_id: UUID,
        department: Department,
        verdict: Verdict,
        reason: str | None = None,
        officer_name: str | None = None,
    ) -> None:
        """One department changed its verdict."""
        ...


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


class EmailNotificationDispatcher:
    """Sends clearance notifications by email."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def notify_approved(
        self,
        student_name: str,
        student_email: str,
        application_id: UUID,
    ) -> None:
        if not self.enabled:
            logger.debug(
                f"Email notifications disabled, skipping certificate email for {application_id}"
            )
            return

        sent = await send_certificate_ready(
            to_email=student_email,
            student_name=student_name,
            application_id=str(application_id),
        )
        if not sent:
            raise NotificationError(f"Certificate ready email failed for {application_id}")

    async def notify_decision(
        self,
        student_name: str,
        student_email: str,
        application_id: UUID,
        department: Department,
        verdict: Verdict,
        reason: str | None = None,
        officer_name: str | None = None,
    ) -> None:
        if not self.enabled:
            logger.debug(
                f"Email notifications disabled, skipping decision email for {application_id}"
            )
            return

        sent = await send_department_decision(
            to_email=student_email,
            student_name=student_name,
            application_id=str(application_id),
            department=department.value,
            verdict=verdict.value,
            reason=reason,
            officer_name=officer_name,
        )
        if not sent:
            raise NotificationError(
                f"{department.value} decision email failed for {application_id}"
            )
