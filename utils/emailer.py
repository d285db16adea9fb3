import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


def _smtp_settings():
    cfg = current_app.config
    username = cfg.get("SMTP_USERNAME")
    return {
        "host": cfg.get("SMTP_HOST"),
        "port": int(cfg.get("SMTP_PORT", 587)),
        "username": username,
        "password": cfg.get("SMTP_PASSWORD"),
        "sender": cfg.get("SMTP_FROM_EMAIL") or username,
        "starttls": cfg.get("SMTP_USE_TLS", True),
    }


def send_email(to_email: str, subject: str, body: str):
    """
    Sends one plain-text security notice. Returns (sent, error).
    An unconfigured mailer is a soft failure, not an error.
    """
    smtp = _smtp_settings()
    if not smtp["host"] or not smtp["sender"]:
        logger.info("Email not configured; dropping %r to %s", subject, to_email)
        return False, "Email not configured"

    message = EmailMessage()
    message["From"] = smtp["sender"]
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(body)

    try:
        with smtplib.SMTP(smtp["host"], smtp["port"], timeout=10) as server:
            if smtp["starttls"]:
                server.starttls()
            if smtp["username"] and smtp["password"]:
                server.login(smtp["username"], smtp["password"])
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("SMTP delivery of %r to %s failed: %s", subject, to_email, exc)
        return False, str(exc)
    return True, None
