"""
Tests for the second-factor enrollment lifecycle.
"""

import base64
import json
from types import SimpleNamespace
from unittest.mock import patch
from urllib.parse import unquote

import pytest
from sqlalchemy.exc import OperationalError

from models import db
from models.audit_log import AuditLog
from models.user import User
from security import two_factor
from security.results import AuthStoreError, TwoFactorStatus
from security.secret_box import unseal
from security.totp import code_at
from tests.helpers import FIXED_NOW, PASSWORD


def _reload(user_id):
    db.session.expire_all()
    return db.session.get(User, user_id)


def _wrong(code):
    return f"{(int(code) + 1) % 1000000:06d}"


class TestBeginSetup:
    """Disabled -> Pending."""

    def test_returns_secret_and_uri_once(self, user):
        result = two_factor.begin_setup(user)

        assert result.status is TwoFactorStatus.STARTED
        assert result.secret
        assert result.provisioning_uri.startswith("otpauth://totp/")
        assert "alice@example.com" in unquote(result.provisioning_uri)

    def test_returns_scannable_qr_code(self, user):
        result = two_factor.begin_setup(user)

        prefix = "data:image/svg+xml;base64,"
        assert result.qr_code.startswith(prefix)
        assert b"<svg" in base64.b64decode(result.qr_code[len(prefix):])

    def test_stores_sealed_secret_and_stays_disabled(self, user):
        result = two_factor.begin_setup(user)

        fresh = _reload(user.id)
        assert fresh.two_factor_enabled is False
        assert fresh.two_factor_secret != result.secret
        assert result.secret not in fresh.two_factor_secret
        assert unseal(fresh.two_factor_secret) == result.secret
        assert two_factor.state_of(fresh) == two_factor.STATE_PENDING

    def test_repeat_replaces_pending_secret(self, user):
        first = two_factor.begin_setup(user)
        second = two_factor.begin_setup(_reload(user.id))

        assert second.status is TwoFactorStatus.STARTED
        assert first.secret != second.secret
        assert unseal(_reload(user.id).two_factor_secret) == second.secret

    def test_refused_when_already_enabled(self, totp_user):
        user, secret = totp_user

        result = two_factor.begin_setup(user)

        assert result.status is TwoFactorStatus.ALREADY_ENABLED
        assert result.secret is None
        assert unseal(_reload(user.id).two_factor_secret) == secret

    def test_secret_never_reaches_audit_log(self, user):
        result = two_factor.begin_setup(user)

        for row in AuditLog.query.all():
            assert result.secret not in (row.metadata_json or "")


class TestConfirmSetup:
    """Pending -> Enabled."""

    def test_correct_code_enables(self, user):
        secret = two_factor.begin_setup(user).secret

        result = two_factor.confirm_setup(_reload(user.id), code_at(secret, FIXED_NOW), now=FIXED_NOW)

        assert result.status is TwoFactorStatus.ENABLED
        fresh = _reload(user.id)
        assert fresh.two_factor_enabled is True
        assert two_factor.state_of(fresh) == two_factor.STATE_ENABLED
        assert AuditLog.query.filter_by(action="2fa_enabled", user_id=user.id).count() == 1

    def test_wrong_code_leaves_pending_then_correct_code_succeeds(self, user):
        secret = two_factor.begin_setup(user).secret
        sealed_before = _reload(user.id).two_factor_secret
        code = code_at(secret, FIXED_NOW)

        failed = two_factor.confirm_setup(_reload(user.id), _wrong(code), now=FIXED_NOW)

        assert failed.status is TwoFactorStatus.INVALID_CODE
        fresh = _reload(user.id)
        assert fresh.two_factor_enabled is False
        assert fresh.two_factor_secret == sealed_before

        retried = two_factor.confirm_setup(fresh, code, now=FIXED_NOW)
        assert retried.status is TwoFactorStatus.ENABLED

    def test_failed_confirmation_is_audited_without_code(self, user):
        secret = two_factor.begin_setup(user).secret
        code = _wrong(code_at(secret, FIXED_NOW))

        two_factor.confirm_setup(_reload(user.id), code, now=FIXED_NOW)

        row = AuditLog.query.filter_by(action="2fa_confirm_failed").one()
        assert code not in row.metadata_json
        assert json.loads(row.metadata_json)["code"] == "[REDACTED]"

    def test_not_in_setup_without_pending_secret(self, user):
        result = two_factor.confirm_setup(user, "123456", now=FIXED_NOW)

        assert result.status is TwoFactorStatus.NOT_IN_SETUP
        assert _reload(user.id).two_factor_enabled is False

    def test_not_in_setup_when_already_enabled(self, totp_user):
        user, secret = totp_user

        result = two_factor.confirm_setup(user, code_at(secret, FIXED_NOW), now=FIXED_NOW)

        assert result.status is TwoFactorStatus.NOT_IN_SETUP

    def test_confirm_loses_race_with_disable(self, user):
        secret = two_factor.begin_setup(user).secret
        fresh = _reload(user.id)
        # the view the request loaded before a parallel disable committed
        stale_view = SimpleNamespace(
            id=fresh.id,
            email=fresh.email,
            two_factor_secret=fresh.two_factor_secret,
            two_factor_enabled=False,
        )
        assert two_factor.disable(fresh, PASSWORD).status is TwoFactorStatus.DISABLED

        result = two_factor.confirm_setup(stale_view, code_at(secret, FIXED_NOW), now=FIXED_NOW)

        assert result.status is TwoFactorStatus.NOT_IN_SETUP
        after = _reload(user.id)
        assert after.two_factor_enabled is False
        assert after.two_factor_secret is None


class TestDisable:
    """Any state -> Disabled, behind re-authentication."""

    def test_correct_password_disables(self, totp_user):
        user, _ = totp_user

        result = two_factor.disable(user, PASSWORD)

        assert result.status is TwoFactorStatus.DISABLED
        fresh = _reload(user.id)
        assert fresh.two_factor_enabled is False
        assert fresh.two_factor_secret is None
        assert AuditLog.query.filter_by(action="2fa_disabled", user_id=user.id).count() == 1

    def test_wrong_password_keeps_2fa(self, totp_user):
        user, secret = totp_user

        result = two_factor.disable(user, "not-the-password")

        assert result.status is TwoFactorStatus.INVALID_PASSWORD
        fresh = _reload(user.id)
        assert fresh.two_factor_enabled is True
        assert unseal(fresh.two_factor_secret) == secret

    def test_wrong_password_audit_is_redacted(self, totp_user):
        user, _ = totp_user

        two_factor.disable(user, "hunter2-guess")

        row = AuditLog.query.filter_by(action="2fa_disable_failed").one()
        assert "hunter2-guess" not in row.metadata_json

    def test_abandons_pending_setup(self, user):
        two_factor.begin_setup(user)

        result = two_factor.disable(_reload(user.id), PASSWORD)

        assert result.status is TwoFactorStatus.DISABLED
        assert two_factor.state_of(_reload(user.id)) == two_factor.STATE_DISABLED

    def test_already_disabled_is_noop(self, user):
        result = two_factor.disable(user, PASSWORD)

        assert result.status is TwoFactorStatus.DISABLED
        assert AuditLog.query.filter_by(action="2fa_disabled").count() == 0


class TestStoreFailures:
    """Unreadable secrets and database errors raise AuthStoreError instead of returning a verdict."""

    def test_confirm_with_rotated_key_raises(self, app, user):
        secret = two_factor.begin_setup(user).secret
        app.config["SECRET_KEY"] = "rotated-secret-key"

        with pytest.raises(AuthStoreError):
            two_factor.confirm_setup(_reload(user.id), code_at(secret, FIXED_NOW), now=FIXED_NOW)

        assert _reload(user.id).two_factor_enabled is False

    def test_reread_after_lost_race_maps_store_errors(self, user):
        boom = OperationalError("SELECT users", {}, Exception("connection refused"))

        with patch("security.two_factor._swap", return_value=False), \
                patch.object(db.session, "refresh", side_effect=boom):
            with pytest.raises(AuthStoreError):
                two_factor.begin_setup(user)
