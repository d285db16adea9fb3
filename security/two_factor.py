"""
Second-factor enrollment lifecycle: Disabled -> Pending -> Enabled.

    Disabled  no secret, two_factor_enabled False
    Pending   sealed secret stored, two_factor_enabled False
    Enabled   sealed secret stored, two_factor_enabled True

Every transition is a compare-and-swap UPDATE keyed on the state read at the
start of the call, so interleaved setup/confirm/disable requests for one
account cannot leave it enabled with a secret the user never confirmed.
The plaintext secret leaves this module exactly once, from begin_setup.
"""
import logging

from sqlalchemy import update

from models import db
from models.user import User
from security.password import verify_password
from security.results import AuthStoreError, TwoFactorResult, TwoFactorStatus
from security.secret_box import SecretBoxError, seal, unseal
from security.store import store_guard
from security.totp import generate_secret, provisioning_uri, qr_code_data_uri, verify_code
from utils.audit import log_event

logger = logging.getLogger(__name__)

STATE_DISABLED = "disabled"
STATE_PENDING = "pending"
STATE_ENABLED = "enabled"


def state_of(user) -> str:
    if user.two_factor_enabled and user.two_factor_secret:
        return STATE_ENABLED
    if user.two_factor_secret:
        return STATE_PENDING
    return STATE_DISABLED


def _swap(user, expected_secret, expected_enabled: bool, **values) -> bool:
    """UPDATE ... WHERE the row still holds the state we decided on. True if it did."""
    secret_clause = (
        User.two_factor_secret.is_(None) if expected_secret is None
        else User.two_factor_secret == expected_secret
    )
    stmt = (
        update(User)
        .where(User.id == user.id, secret_clause, User.two_factor_enabled == expected_enabled)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    with store_guard("Account store unavailable"):
        swapped = db.session.execute(stmt).rowcount == 1
        db.session.commit()
    return swapped


def _reread(user):
    with store_guard("Account store unavailable"):
        db.session.refresh(user)


def _open(user, sealed) -> str:
    try:
        return unseal(sealed)
    except SecretBoxError as exc:
        logger.error("Cannot decrypt 2FA secret for user %s; check TWO_FACTOR_ENCRYPTION_KEY", user.id)
        raise AuthStoreError("Second-factor secret unreadable") from exc


def begin_setup(user, ip=None, user_agent=None) -> TwoFactorResult:
    """
    Generates and stores a fresh pending secret, replacing any earlier pending one.
    Returns it with its otpauth:// URI; this is the only time it is shown.
    """
    secret = generate_secret()
    while True:
        if user.two_factor_enabled:
            return TwoFactorResult(TwoFactorStatus.ALREADY_ENABLED)
        if _swap(user, user.two_factor_secret, False, two_factor_secret=seal(secret)):
            break
        # the row moved between our read and write; re-read and decide again
        logger.info("2FA setup for user %s raced another transition", user.id)
        _reread(user)

    log_event("2fa_setup_started", user_id=user.id, entity="User", entity_id=user.id,
              outcome="success", ip=ip, user_agent=user_agent)
    uri = provisioning_uri(secret, user.email)
    return TwoFactorResult(
        TwoFactorStatus.STARTED,
        secret=secret,
        provisioning_uri=uri,
        qr_code=qr_code_data_uri(uri),
    )


def confirm_setup(user, code: str, now=None, ip=None, user_agent=None) -> TwoFactorResult:
    """Pending -> Enabled when code matches the pending secret; otherwise no change."""
    sealed = user.two_factor_secret
    if user.two_factor_enabled or not sealed:
        return TwoFactorResult(TwoFactorStatus.NOT_IN_SETUP)

    if not verify_code(_open(user, sealed), code, now=now):
        log_event("2fa_confirm_failed", user_id=user.id, entity="User", entity_id=user.id,
                  outcome="failure", metadata={"code": code}, ip=ip, user_agent=user_agent)
        return TwoFactorResult(TwoFactorStatus.INVALID_CODE)

    if not _swap(user, sealed, False, two_factor_enabled=True):
        # setup restarted or disabled meanwhile; the code was for a secret that is gone
        return TwoFactorResult(TwoFactorStatus.NOT_IN_SETUP)

    logger.info("2FA enabled for user %s", user.id)
    log_event(
        "2fa_enabled",
        user_id=user.id,
        entity="User",
        entity_id=user.id,
        outcome="success",
        metadata={"old": {"two_factor_enabled": False}, "new": {"two_factor_enabled": True}},
        ip=ip,
        user_agent=user_agent,
    )
    return TwoFactorResult(TwoFactorStatus.ENABLED)


def disable(user, password: str, ip=None, user_agent=None) -> TwoFactorResult:
    """Pending or Enabled -> Disabled, after re-checking the account password."""
    if not verify_password(password, user.password_hash):
        log_event("2fa_disable_failed", user_id=user.id, entity="User", entity_id=user.id,
                  outcome="failure", metadata={"password": password}, ip=ip, user_agent=user_agent)
        return TwoFactorResult(TwoFactorStatus.INVALID_PASSWORD)

    while True:
        sealed = user.two_factor_secret
        was_enabled = user.two_factor_enabled
        if sealed is None and not was_enabled:
            return TwoFactorResult(TwoFactorStatus.DISABLED)
        if _swap(user, sealed, was_enabled, two_factor_secret=None, two_factor_enabled=False):
            break
        # a concurrent transition landed first; disabling is still what was asked for
        _reread(user)

    logger.info("2FA disabled for user %s", user.id)
    log_event(
        "2fa_disabled",
        user_id=user.id,
        entity="User",
        entity_id=user.id,
        outcome="success",
        metadata={"old": {"two_factor_enabled": was_enabled}, "new": {"two_factor_enabled": False}},
        ip=ip,
        user_agent=user_agent,
    )
    return TwoFactorResult(TwoFactorStatus.DISABLED)
