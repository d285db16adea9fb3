import logging

from utils.emailer import send_email
from utils.tasks import dispatch

logger = logging.getLogger(__name__)


def _deliver(to_email: str, subject: str, body: str):
    sent, error = send_email(to_email, subject, body)
    if not sent:
        logger.warning("Security notification %r to %s not delivered: %s", subject, to_email, error)


def notify_account_locked(user, lockout_minutes: int, locked_until):
    name = user.full_name or user.email
    body = (
        f"Hello {name},\n\n"
        f"Your account has been temporarily locked after too many failed sign-in attempts.\n"
        f"It will unlock automatically in {lockout_minutes} minutes "
        f"(at {locked_until:%H:%M} UTC).\n\n"
        "If these attempts were not you, change your password as soon as you can sign in again."
    )
    return dispatch(_deliver, user.email, "Your account has been temporarily locked", body)


def notify_suspicious_activity(user, signals, ip: str):
    name = user.full_name or user.email
    lines = "\n".join(f"  - {s.message}" for s in signals)
    body = (
        f"Hello {name},\n\n"
        f"We noticed unusual activity while signing in to your account from {ip}:\n"
        f"{lines}\n\n"
        "If this was you, no action is needed. Otherwise change your password and enable two-factor authentication."
    )
    return dispatch(_deliver, user.email, "Suspicious activity on your account", body)
