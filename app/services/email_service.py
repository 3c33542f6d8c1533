"""
Product Workspace Platform
Email Service — team invitations and notifications.

When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


_TEMPLATES: dict[str, dict[str, str]] = {
    "team_invitation": {
        "subject": "{inviter_name} invited you to join {team_name}",
        "html": """
        <div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
                <h2 style="margin: 0; font-size: 18px;">Join {team_name}</h2>
            </div>
            <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
                <p style="color: #64748b; line-height: 1.6;">
                    {inviter_name} invited you to collaborate as <strong>{role}</strong>.
                </p>
                <a href="{accept_url}" style="background: #3b82f6; color: white; padding: 10px 20px;
                   border-radius: 6px; text-decoration: none; display: inline-block;">Accept invitation</a>
                <p style="color: #94a3b8; font-size: 12px; margin-top: 16px;">
                    This invitation expires on {expires_at}.
                </p>
            </div>
        </div>
        """,
    },
    "feedback_received": {
        "subject": "New feedback on {work_item_name}",
        "html": """
        <div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h3 style="color: #1e293b;">New {source} feedback from {source_name}</h3>
            <blockquote style="color: #64748b; border-left: 3px solid #e2e8f0; padding-left: 12px;">
                {content}
            </blockquote>
        </div>
        """,
    },
}


class EmailService:
    """Email sending with named templates; log-only without MAIL_SERVER."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(cls, *, to_email: str, subject: str, html_body: str,
             to_name: str | None = None) -> dict[str, Any]:
        """Send one email.  Returns {status, to, subject[, error]}.

        Delivery failures are logged and reported in the result, never raised.
        """
        result = {"to": to_email, "subject": subject}

        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            result["status"] = "logged"
            return result

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            result["status"] = "sent"
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            result["status"] = "failed"
            result["error"] = str(exc)[:500]
            logger.error("Email failed: to=%s error=%s", to_email, exc)
        return result

    @classmethod
    def send_from_template(cls, *, to_email: str, template_name: str,
                           context: dict[str, Any], to_name: str | None = None):
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=template["subject"].format_map(_SafeDict(context)),
            html_body=template["html"].format_map(_SafeDict(context)),
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
