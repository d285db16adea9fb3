"""
Login decision flow.

    authenticate            identifier + password
      unknown account      -> INVALID_CREDENTIALS
      locked               -> ACCOUNT_LOCKED (password never checked)
      wrong password       -> failure counted, INVALID_CREDENTIALS / ACCOUNT_LOCKED
      2FA enabled          -> REQUIRES_SECOND_FACTOR + challenge token
      otherwise            -> SUCCESS

    verify_second_factor    challenge token + one-time code
      bad/expired challenge-> INVALID_CREDENTIALS
      locked               -> ACCOUNT_LOCKED
      wrong code           -> failure counted, INVALID_CODE / ACCOUNT_LOCKED
      otherwise            -> SUCCESS

Every terminal outcome writes exactly one LoginEvent. The password step of a
2FA account is not terminal: it writes no event and leaves the counter alone.
"""
import hashlib
import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import update

from models import db
from models.login_challenge import LoginChallenge
from models.login_event import LoginEvent, OUTCOME_FAILURE, OUTCOME_SUCCESS
from models.user import User
from security.activity import detect_for_user_id
from security.lockout import is_locked, record_failure, record_success
from security.password import check_credentials
from security.results import AuthStoreError, LoginResult, LoginStatus
from security.secret_box import SecretBoxError, unseal
from security.session import create_session
from security.store import store_guard
from security.totp import verify_code
from utils.audit import log_event
from utils.clock import to_naive_utc, utcnow
from utils.tasks import dispatch

logger = logging.getLogger(__name__)

REASON_UNKNOWN_ACCOUNT = "unknown_account"
REASON_ACCOUNT_LOCKED = "account_locked"
REASON_INVALID_PASSWORD = "invalid_password"
REASON_INVALID_2FA_CODE = "invalid_2fa_code"
REASON_INVALID_2FA_CHALLENGE = "invalid_2fa_challenge"
REASON_2FA_NOT_ENABLED = "two_factor_not_enabled"

RECENT_LOGINS_LIMIT = 5


def _normalize_email(value) -> str:
    return (value or "").strip().lower()


def _hash_challenge(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def account_summary(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "two_factor_enabled": user.two_factor_enabled,
    }


def recent_logins(user, limit: int = RECENT_LOGINS_LIMIT) -> list:
    """The account's newest login events, successes and failures, newest first."""
    with store_guard():
        events = (
            LoginEvent.query
            .filter_by(user_id=user.id)
            .order_by(LoginEvent.created_at.desc(), LoginEvent.id.desc())
            .limit(limit)
            .all()
        )
    return [
        {
            "ip": e.ip,
            "user_agent": e.user_agent,
            "outcome": e.outcome,
            "created_at": e.created_at.isoformat(),
        }
        for e in events
    ]


def _write_event(user, email, ip, user_agent, outcome, reason, now):
    with store_guard():
        event = LoginEvent(
            user_id=user.id if user is not None else None,
            email=email,
            ip=ip,
            user_agent=(user_agent or "")[:255],
            outcome=outcome,
            failure_reason=reason,
            created_at=now,
        )
        db.session.add(event)
        db.session.commit()
    return event


def _fail(user, email, ip, user_agent, reason, now, status, retry_after=0) -> LoginResult:
    """Terminal failure without touching the counter (unknown account, locked, bad challenge)."""
    _write_event(user, email, ip, user_agent, OUTCOME_FAILURE, reason, now)
    log_event(
        "login_failed",
        user_id=user.id if user is not None else None,
        entity="User",
        entity_id=user.id if user is not None else None,
        outcome="failure",
        metadata={"email": email, "reason": reason},
        ip=ip,
        user_agent=user_agent,
    )
    return LoginResult(status, retry_after_seconds=retry_after)


def _reject(user, ip, user_agent, reason, now, status) -> LoginResult:
    """Terminal failure that counts against the lockout threshold."""
    fail_count, locked_now = record_failure(user, reason, now=now)
    email = user.email
    _write_event(user, email, ip, user_agent, OUTCOME_FAILURE, reason, now)
    log_event(
        "login_failed",
        user_id=user.id,
        entity="User",
        entity_id=user.id,
        outcome="failure",
        metadata={"email": email, "reason": reason, "failed_attempts": fail_count, "locked_now": locked_now},
        ip=ip,
        user_agent=user_agent,
    )
    if locked_now:
        minutes = int(current_app.config.get("LOCKOUT_MINUTES", 15))
        return LoginResult(LoginStatus.ACCOUNT_LOCKED, retry_after_seconds=minutes * 60)
    return LoginResult(status)


def _issue_challenge(user, ip, user_agent, now) -> str:
    raw = secrets.token_urlsafe(32)
    ttl = int(current_app.config.get("TWO_FACTOR_CHALLENGE_TTL_SECONDS", 300))
    with store_guard():
        db.session.add(LoginChallenge(
            user_id=user.id,
            token_hash=_hash_challenge(raw),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
            ip=ip,
            user_agent=(user_agent or "")[:255],
        ))
        db.session.commit()
    return raw


def _consume_challenge(challenge, now) -> bool:
    """Marks the challenge used. False if another request consumed it first."""
    with store_guard():
        consumed = db.session.execute(
            update(LoginChallenge)
            .where(LoginChallenge.id == challenge.id, LoginChallenge.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()
    return consumed == 1


def _complete(user, ip, user_agent, now) -> LoginResult:
    record_success(user)
    event = _write_event(user, user.email, ip, user_agent, OUTCOME_SUCCESS, None, now)
    log_event(
        "login_success",
        user_id=user.id,
        entity="User",
        entity_id=user.id,
        outcome="success",
        metadata={"email": user.email, "two_factor": user.two_factor_enabled},
        ip=ip,
        user_agent=user_agent,
    )

    # informational; must not delay or alter the decision already made
    dispatch(detect_for_user_id, user.id, ip, user_agent, exclude_event_id=event.id, now=now)

    with store_guard():
        token = create_session(user.id, ip=ip, user_agent=user_agent)
    logger.info("User %s logged in from %s", user.id, ip)
    return LoginResult(LoginStatus.SUCCESS, session_token=token, account=account_summary(user))


def authenticate(email: str, password: str, ip=None, user_agent=None, now=None) -> LoginResult:
    """First login step: identifier and password."""
    now = to_naive_utc(now) if now else utcnow()
    email = _normalize_email(email)

    with store_guard():
        user = User.query.filter_by(email=email).first()

    if user is None:
        # burn the same bcrypt work as a real check; same answer as a wrong password
        check_credentials(None, password)
        return _fail(None, email, ip, user_agent, REASON_UNKNOWN_ACCOUNT, now, LoginStatus.INVALID_CREDENTIALS)

    locked, seconds_left = is_locked(user, now=now)
    if locked:
        return _fail(user, email, ip, user_agent, REASON_ACCOUNT_LOCKED, now,
                     LoginStatus.ACCOUNT_LOCKED, retry_after=seconds_left)

    if not check_credentials(user, password):
        return _reject(user, ip, user_agent, REASON_INVALID_PASSWORD, now, LoginStatus.INVALID_CREDENTIALS)

    if user.two_factor_enabled:
        token = _issue_challenge(user, ip, user_agent, now)
        logger.info("User %s passed password step; awaiting second factor", user.id)
        return LoginResult(LoginStatus.REQUIRES_SECOND_FACTOR, challenge_token=token)

    return _complete(user, ip, user_agent, now)


def verify_second_factor(challenge_token: str, code: str, ip=None, user_agent=None, now=None) -> LoginResult:
    """Second login step for 2FA accounts: challenge token and one-time code."""
    now = to_naive_utc(now) if now else utcnow()

    with store_guard():
        challenge = None
        if challenge_token:
            challenge = LoginChallenge.query.filter_by(token_hash=_hash_challenge(challenge_token)).first()
        user = db.session.get(User, challenge.user_id) if challenge is not None else None

    if challenge is None or user is None or challenge.consumed_at is not None or challenge.expires_at <= now:
        return _fail(user, user.email if user else None, ip, user_agent,
                     REASON_INVALID_2FA_CHALLENGE, now, LoginStatus.INVALID_CREDENTIALS)

    locked, seconds_left = is_locked(user, now=now)
    if locked:
        return _fail(user, user.email, ip, user_agent, REASON_ACCOUNT_LOCKED, now,
                     LoginStatus.ACCOUNT_LOCKED, retry_after=seconds_left)

    if not user.two_factor_enabled or not user.two_factor_secret:
        # 2FA was switched off between the two steps; make the client start over
        _consume_challenge(challenge, now)
        return _fail(user, user.email, ip, user_agent, REASON_2FA_NOT_ENABLED, now,
                     LoginStatus.INVALID_CREDENTIALS)

    try:
        secret = unseal(user.two_factor_secret)
    except SecretBoxError as exc:
        logger.error("Cannot decrypt 2FA secret for user %s; check TWO_FACTOR_ENCRYPTION_KEY", user.id)
        raise AuthStoreError("Second-factor secret unreadable") from exc

    if not verify_code(secret, code, now=now):
        return _reject(user, ip, user_agent, REASON_INVALID_2FA_CODE, now, LoginStatus.INVALID_CODE)

    if not _consume_challenge(challenge, now):
        # replay of a challenge that a parallel request just completed
        return _fail(user, user.email, ip, user_agent, REASON_INVALID_2FA_CHALLENGE, now,
                     LoginStatus.INVALID_CREDENTIALS)

    return _complete(user, ip, user_agent, now)
