"""
Email Service using Resend

Handles sending emails for the no due clearance flow.
"""

import asyncio
import logging
import os
from html import escape

import resend

logger = logging.getLogger(__name__)

# Initialize Resend with API key
resend.api_key = os.getenv("RESEND_API_KEY")

# Configurations
EMAIL_FROM = os.getenv("EMAIL_FROM", "No Due <noreply@nodue.dev>")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

_STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #1a365d; margin-bottom: 24px; }
    .button { display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _render(title: str, body: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>{_STYLE}</style>
    </head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                <p>No Due Clearance System</p>
            </div>
        </div>
    </body>
    </html>
    """


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        html_content: HTML content of the email

    Returns:
        True if email was sent successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": EMAIL_FROM,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Run sync Resend call in thread pool to avoid blocking event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_certificate_ready(
    to_email: str,
    student_name: str,
    application_id: str,
) -> bool:
    """Tell the student every department has cleared them."""
    safe_student_name = escape(student_name)

    dashboard_url = f"{FRONTEND_URL}/student/dashboard"
    verify_url = f"{FRONTEND_URL}/verify/{application_id}"
    body = f"""
            <p>Dear {safe_student_name},</p>

            <p>Congratulations! Your no due application has been approved by all departments.</p>

            <p>Your No Due Certificate is now ready to download from your dashboard:</p>

            <a href="{dashboard_url}" class="button">Open Dashboard</a>

            <p>Anyone can confirm the certificate at:</p>
            <p style="word-break: break-all; color: #3b82f6;">{verify_url}</p>
    """
    return await send_email(
        to_email=to_email,
        subject="Your No Due Certificate is ready",
        html_content=_render("Certificate Ready", body),
    )


async def send_department_decision(
    to_email: str,
    student_name: str,
    application_id: str,
    department: str,
    verdict: str,
    reason: str | None = None,
    officer_name: str | None = None,
) -> bool:
    """Tell the student one department has approved or rejected their application."""
    safe_student_name = escape(student_name)
    safe_department = escape(department.capitalize())
    safe_verdict = escape(verdict)

    details = ""
    if reason:
        details += f"<p><strong>Reason:</strong> {escape(reason)}</p>"
    if officer_name:
        details += f"<p><strong>Reviewed by:</strong> {escape(officer_name)}</p>"

    next_step = (
        "<p>Once every rejected department is resolved you can re-apply from your dashboard.</p>"
        if verdict == "rejected"
        else ""
    )

    dashboard_url = f"{FRONTEND_URL}/student/dashboard"
    body = f"""
            <p>Dear {safe_student_name},</p>

            <p>The <strong>{safe_department}</strong> department has <strong>{safe_verdict}</strong>
            your no due application ({escape(application_id)}).</p>

            {details}
            {next_step}

            <a href="{dashboard_url}" class="button">View Application</a>
    """
    return await send_email(
        to_email=to_email,
        subject=f"{safe_department} department {safe_verdict} your no due application",
        html_content=_render("Application Update", body),
    )
