"""Outgoing email (password reset links)."""

import logging
import os
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM", SMTP_USERNAME)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173").rstrip("/")


def is_configured() -> bool:
    return bool(SMTP_HOST and SMTP_USERNAME and SMTP_PASSWORD)


def _send(to_email: str, subject: str, html_body: str):
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = MAIL_FROM
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html"))
    try:
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=15) as server:
            server.ehlo()
            server.starttls()
            server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.sendmail(MAIL_FROM, to_email, msg.as_string())
        logger.info(f"Email sent to {to_email}")
    except smtplib.SMTPException as e:
        logger.error(f"Email to {to_email} failed: {e}", exc_info=True)
    except OSError as e:
        logger.error(f"SMTP connection to {SMTP_HOST}:{SMTP_PORT} failed: {e}")


def send_email_async(to_email: str, subject: str, html_body: str) -> bool:
    """Send email in a background thread. Returns False when mail is not configured."""
    if not is_configured():
        logger.warning("Email skipped: SMTP_HOST/SMTP_USERNAME/SMTP_PASSWORD not set")
        return False
    threading.Thread(target=_send, args=(to_email, subject, html_body), daemon=True).start()
    return True


def send_password_reset(to_email: str, token: str) -> bool:
    link = f"{FRONTEND_URL}/reset-password?token={token}"
    html_body = f"""
    <p>We received a request to reset your password.</p>
    <p><a href="{link}">Reset your password</a></p>
    <p>This link expires in one hour. If you did not ask for a reset you can ignore this email.</p>
    """
    return send_email_async(to_email, "Reset your password", html_body)
