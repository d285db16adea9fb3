"""
Bearer sessions issued after a completed login.

The client holds a random token; the table holds only its SHA-256. A session
is usable until it is revoked, passes expires_at, or sits idle for longer
than IDLE_TIMEOUT_SECONDS.
"""
import hashlib
import secrets
from datetime import timedelta
from typing import Optional

from flask import current_app, request
from sqlalchemy import update

from models import db
from models.session import Session
from security.store import store_guard
from utils.clock import to_naive_utc, utcnow

_UNAVAILABLE = "Session store unavailable"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(user_id: int, ip=None, user_agent=None, now=None) -> str:
    """Stores a new session and returns the raw bearer token. It is not recoverable later."""
    now = to_naive_utc(now) if now else utcnow()
    raw_token = secrets.token_urlsafe(32)
    lifetime = int(current_app.config.get("SESSION_LIFETIME_SECONDS", 28800))

    with store_guard(_UNAVAILABLE):
        db.session.add(Session(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            created_at=now,
            last_seen_at=now,
            expires_at=now + timedelta(seconds=lifetime),
            ip=ip,
            user_agent=(user_agent or "")[:255],
        ))
        db.session.commit()
    return raw_token


def bearer_token_from_request() -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _is_live(sess, now) -> bool:
    if sess.revoked or sess.expires_at <= now:
        return False
    idle = int(current_app.config.get("IDLE_TIMEOUT_SECONDS", 1200))
    return (sess.last_seen_at or sess.created_at) + timedelta(seconds=idle) > now


def resolve_session(raw_token: str, now=None):
    """The live session for raw_token, with last_seen_at bumped; None otherwise."""
    if not raw_token:
        return None
    now = to_naive_utc(now) if now else utcnow()
    with store_guard(_UNAVAILABLE):
        sess = Session.query.filter_by(token_hash=hash_token(raw_token)).first()
        if sess is None or not _is_live(sess, now):
            return None

        sess.last_seen_at = now
        db.session.commit()
    return sess


def get_session_from_request():
    return resolve_session(bearer_token_from_request())


def _revoke(stmt) -> int:
    with store_guard(_UNAVAILABLE):
        revoked = db.session.execute(
            stmt.values(revoked_at=utcnow()).execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()
    return revoked


def revoke_session(raw_token: str) -> bool:
    if not raw_token:
        return False
    return _revoke(
        update(Session)
        .where(Session.token_hash == hash_token(raw_token), Session.revoked_at.is_(None))
    ) == 1


def revoke_other_sessions(user_id: int, keep_session_id=None) -> int:
    """Signs the account out everywhere except keep_session_id. Returns how many were revoked."""
    stmt = update(Session).where(Session.user_id == user_id, Session.revoked_at.is_(None))
    if keep_session_id is not None:
        stmt = stmt.where(Session.id != keep_session_id)
    return _revoke(stmt)
