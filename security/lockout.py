"""
Per-account failed-login counter and time-boxed lock.

Each decision point is one UPDATE against the users row, so concurrent
attempts for the same account serialise in the database: increments are
never lost and the lock decision always sees the post-increment count.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import case, update

from models import db
from models.user import User
from security.results import AuthStoreError
from security.store import store_guard
from utils.audit import log_event
from utils.clock import to_naive_utc, utcnow
from utils.notifications import notify_account_locked

logger = logging.getLogger(__name__)


def _threshold() -> int:
    return int(current_app.config.get("MAX_LOGIN_ATTEMPTS", 5))


def _lockout_minutes() -> int:
    return int(current_app.config.get("LOCKOUT_MINUTES", 15))


def _execute(stmt, returning=False):
    """
    Runs one UPDATE in its own transaction.
    Returns the RETURNING row (or None) when returning=True, else the rowcount.
    """
    with store_guard("Account store unavailable"):
        result = db.session.execute(stmt.execution_options(synchronize_session=False))
        out = result.one_or_none() if returning else result.rowcount
        db.session.commit()
    return out


def is_locked(user, now=None) -> tuple[bool, int]:
    """
    Returns (locked, seconds_remaining).
    An expired lock is cleared here, together with the counter.
    """
    now = to_naive_utc(now) if now else utcnow()
    locked_until = user.locked_until
    if locked_until is None:
        return False, 0

    if locked_until > now:
        seconds = int((locked_until - now).total_seconds())
        return True, max(seconds, 1)

    # idempotent: only the first caller after expiry matches the WHERE
    cleared = _execute(
        update(User)
        .where(User.id == user.id, User.locked_until.is_not(None), User.locked_until <= now)
        .values(failed_login_attempts=0, locked_until=None, last_failed_login_at=None)
    )
    if cleared:
        logger.info("Lock on user %s expired; counters cleared", user.id)
    return False, 0


def record_failure(user, reason: str, now=None) -> tuple[int, bool]:
    """
    Counts one failed attempt. Returns (fail_count, locked_now).
    Reaching the threshold locks the account on this same call.
    """
    now = to_naive_utc(now) if now else utcnow()
    threshold = _threshold()
    minutes = _lockout_minutes()
    lock_until = now + timedelta(minutes=minutes)

    # RHS columns read the pre-update row, so failed_login_attempts + 1 is the new count
    new_count = User.failed_login_attempts + 1
    row = _execute(
        update(User)
        .where(User.id == user.id)
        .values(
            failed_login_attempts=new_count,
            last_failed_login_at=now,
            locked_until=case((new_count >= threshold, lock_until), else_=User.locked_until),
        )
        .returning(User.failed_login_attempts, User.locked_until),
        returning=True,
    )
    if row is None:
        raise AuthStoreError(f"User {user.id} vanished while recording a failure")

    fail_count, locked_until = row
    locked_now = fail_count >= threshold
    logger.info("Failed login for user %s (%s): %s/%s", user.id, reason, fail_count, threshold)

    if locked_now:
        logger.warning("User %s locked until %s after %s failures", user.id, locked_until, fail_count)
        log_event(
            "account_locked",
            user_id=user.id,
            entity="User",
            entity_id=user.id,
            outcome="failure",
            metadata={"reason": reason, "failed_attempts": fail_count, "locked_until": locked_until},
        )
        notify_account_locked(user, minutes, locked_until)

    return fail_count, locked_now


def record_success(user) -> bool:
    """
    Clears the counter after a successful login. Leaves locked_until alone.
    Returns True when something was reset.
    """
    reset = _execute(
        update(User)
        .where(User.id == user.id, User.failed_login_attempts > 0)
        .values(failed_login_attempts=0, last_failed_login_at=None)
    )
    return bool(reset)
