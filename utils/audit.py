import copy
import json
import logging

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = frozenset({
    "password",
    "password_confirmation",
    "current_password",
    "code",
    "secret",
    "two_factor_secret",
    "two_factor_recovery_codes",
    "token",
    "challenge_token",
    "session_token",
    "remember_token",
})


def redact(value):
    """Copy of value with every sensitive key, at any depth, replaced by REDACTED."""
    if isinstance(value, dict):
        return {
            k: (REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return copy.copy(value)


def _request_origin():
    if not has_request_context():
        return None, None
    return request.headers.get("X-Forwarded-For", request.remote_addr), request.headers.get("User-Agent", "")


def log_event(action: str, user_id=None, entity=None, entity_id=None, outcome=None,
              metadata=None, ip=None, user_agent=None):
    """
    Best-effort audit write. Callers commit their own work first; a failure
    here is logged and rolled back, never raised.
    """
    if ip is None and user_agent is None:
        ip, user_agent = _request_origin()

    try:
        row = AuditLog(
            user_id=user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            outcome=outcome,
            ip=ip,
            user_agent=user_agent[:255] if user_agent else None,
            metadata_json=json.dumps(redact(metadata), default=str) if metadata else None
        )
        db.session.add(row)
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Audit write for %s failed", action)
        return False
