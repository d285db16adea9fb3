"""
Suspicious-activity heuristics over an account's recent login events.

Informational only: signals are logged and mailed to the account owner but
never change a login decision. All queries are bounded by a lookback window
and served by the (user_id, outcome, created_at) index.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, select

from models import db
from models.login_event import LoginEvent, OUTCOME_SUCCESS
from models.user import User
from utils.clock import to_naive_utc, utcnow
from utils.notifications import notify_suspicious_activity

logger = logging.getLogger(__name__)


class SignalType(str, enum.Enum):
    NEW_IP = "new_ip"
    RAPID_ATTEMPTS = "rapid_attempts"
    NEW_DEVICE = "new_device"


@dataclass
class Signal:
    type: SignalType
    message: str
    details: dict = field(default_factory=dict)


def _known_values(column, user_id, since, exclude_event_id):
    stmt = (
        select(column)
        .where(
            LoginEvent.user_id == user_id,
            LoginEvent.outcome == OUTCOME_SUCCESS,
            LoginEvent.created_at > since,
        )
        .distinct()
    )
    if exclude_event_id is not None:
        stmt = stmt.where(LoginEvent.id != exclude_event_id)
    return {v for v in db.session.scalars(stmt) if v is not None}


def _recent_attempts(user_id, since) -> int:
    stmt = select(func.count(LoginEvent.id)).where(
        LoginEvent.user_id == user_id,
        LoginEvent.created_at > since,
    )
    return db.session.scalar(stmt) or 0


def detect_suspicious_activity(user, ip: str, user_agent: str, now=None, exclude_event_id=None):
    """
    Returns the signals raised by this attempt.

    exclude_event_id keeps the attempt's own success event out of the
    "known" sets; it still counts towards the rapid-attempt window.
    """
    now = to_naive_utc(now) if now else utcnow()
    user_agent = (user_agent or "")[:255]
    cfg = current_app.config
    lookback = now - timedelta(days=int(cfg.get("SUSPICIOUS_LOOKBACK_DAYS", 30)))
    rapid_since = now - timedelta(minutes=int(cfg.get("RAPID_ATTEMPT_WINDOW_MINUTES", 5)))
    rapid_threshold = int(cfg.get("RAPID_ATTEMPT_THRESHOLD", 3))

    known_ips = _known_values(LoginEvent.ip, user.id, lookback, exclude_event_id)
    known_agents = _known_values(LoginEvent.user_agent, user.id, lookback, exclude_event_id)
    has_history = bool(known_ips or known_agents)

    signals = []
    if known_ips and ip not in known_ips:
        signals.append(Signal(SignalType.NEW_IP, "Login from new IP address", {"ip": ip}))

    attempts = _recent_attempts(user.id, rapid_since)
    if attempts > rapid_threshold:
        signals.append(Signal(
            SignalType.RAPID_ATTEMPTS,
            "Multiple login attempts in short time",
            {"count": attempts},
        ))

    if known_agents and user_agent not in known_agents:
        signals.append(Signal(
            SignalType.NEW_DEVICE,
            "Login from new device/browser",
            {"user_agent": user_agent},
        ))

    if signals:
        logger.warning(
            "Suspicious activity for user %s from %s: %s",
            user.id, ip, ", ".join(s.type.value for s in signals),
        )
        if has_history:
            notify_suspicious_activity(user, signals, ip)

    return signals


def detect_for_user_id(user_id: int, ip: str, user_agent: str, exclude_event_id=None, now=None):
    """Background entry point: re-reads the account in the worker's own session."""
    user = db.session.get(User, user_id)
    if user is None:
        return []
    return detect_suspicious_activity(user, ip, user_agent, now=now, exclude_event_id=exclude_event_id)
