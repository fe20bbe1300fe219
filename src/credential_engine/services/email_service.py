"""Email service — delivers one-time codes via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from credential_engine.config import settings
from credential_engine.core.policies import VerificationPurpose

logger = logging.getLogger(__name__)


class CodeDispatcher(Protocol):
    """Anything that can deliver a code to a destination."""

    async def send_code(
        self, destination: str, code: str, purpose: VerificationPurpose
    ) -> bool: ...


# Subject line, heading and lead paragraph per purpose.
_TEMPLATES: dict[VerificationPurpose, tuple[str, str, str]] = {
    VerificationPurpose.PASSWORD_RESET: (
        "Password Reset Code",
        "Password Reset Request",
        "You have requested to reset your password. Use the code below to proceed:",
    ),
    VerificationPurpose.EMAIL_VERIFICATION: (
        "Verify Your Email Address",
        "Email Verification",
        "Please verify your email address using the code below:",
    ),
    VerificationPurpose.TWO_FACTOR_AUTH: (
        "Two-Factor Authentication Code",
        "Two-Factor Authentication",
        "Your two-factor authentication code is:",
    ),
    VerificationPurpose.ACCOUNT_VERIFICATION: (
        "Account Verification Code",
        "Account Verification",
        "Welcome! Please verify your account using the code below:",
    ),
}


def render_code_email(code: str, purpose: VerificationPurpose) -> tuple[str, str, str]:
    """Return ``(subject, text_body, html_body)`` for *purpose*."""
    subject, heading, lead = _TEMPLATES[purpose]
    minutes = purpose.policy.expiry_minutes
    text = (
        f"{heading}\n\n"
        f"{lead}\n\n"
        f"    {code}\n\n"
        f"This code will expire in {minutes} minutes.\n"
        "If you didn't request this, please ignore this email."
    )
    html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{heading}</h2>"
        f"<p>{lead}</p>"
        '<div style="background: #f5f5f5; padding: 20px; text-align: center; margin: 20px 0;">'
        f'<h1 style="margin: 0; font-size: 32px; letter-spacing: 5px;">{code}</h1>'
        "</div>"
        f"<p>This code will expire in {minutes} minutes.</p>"
        "<p>If you didn't request this, please ignore this email.</p>"
        "</div>"
    )
    return subject, text, html


class EmailService:
    """Sends transactional emails using the configured SMTP server."""

    async def send_code(
        self, destination: str, code: str, purpose: VerificationPurpose
    ) -> bool:
        """Email *code* to *destination*.

        Returns ``True`` once the SMTP server accepted the message and
        ``False`` if delivery failed.
        """
        subject, text, html = render_code_email(code, purpose)

        msg = EmailMessage()
        msg["Subject"] = f"{subject} — {settings.app_name}"
        msg["From"] = settings.email_from
        msg["To"] = destination
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        logger.info("Sending %s code email to %s", purpose.value, destination)

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username or None,
                password=settings.smtp_password or None,
                start_tls=True,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning("Code email to %s failed: %s", destination, exc)
            return False

        logger.info("%s code email sent to %s", purpose.value, destination)
        return True
