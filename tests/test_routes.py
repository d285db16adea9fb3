"""
HTTP-level tests for the auth and 2FA blueprints and the CLI.
"""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from models.audit_log import AuditLog
from models.user import User
from security.session import create_session
from security.totp import code_at
from tests.helpers import PASSWORD


def _login(client, email, password=PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _issue_session(user):
    return create_session(user.id, ip="127.0.0.1", user_agent="pytest")


def _signed_in(client, email="alice@example.com"):
    resp = _login(client, email)
    assert resp.status_code == 200
    return _bearer(resp.get_json()["token"])


class TestLoginEndpoint:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.headers["X-Content-Type-Options"] == "nosniff"

    def test_missing_fields(self, client):
        assert client.post("/auth/login", json={"email": "alice@example.com"}).status_code == 400
        assert client.post("/auth/login", data="not json").status_code == 400

    def test_success_then_me_then_logout(self, client, user, sent_emails):
        headers = _signed_in(client)

        me = client.get("/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.get_json()["user"]["email"] == "alice@example.com"

        assert client.post("/auth/logout", headers=headers).status_code == 200
        assert client.get("/auth/me", headers=headers).status_code == 401
        assert AuditLog.query.filter_by(action="user_logout").count() == 1

    def test_me_requires_token(self, client):
        assert client.get("/auth/me").status_code == 401
        assert client.get("/auth/me", headers=_bearer("made-up")).status_code == 401

    def test_unknown_and_wrong_password_are_indistinguishable(self, client, user, sent_emails):
        unknown = _login(client, "nobody@example.com")
        wrong = _login(client, "alice@example.com", "wrong-password")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.get_json() == wrong.get_json()

    def test_lockout_returns_423(self, client, user, sent_emails):
        for _ in range(4):
            assert _login(client, "alice@example.com", "wrong-password").status_code == 401

        locked = _login(client, "alice@example.com", "wrong-password")
        assert locked.status_code == 423
        assert locked.get_json()["retry_after_seconds"] == 15 * 60

        still = _login(client, "alice@example.com")
        assert still.status_code == 423
        assert 0 < still.get_json()["retry_after_seconds"] <= 15 * 60

    def test_store_outage_returns_503(self, client, app):
        boom = OperationalError("SELECT users", {}, Exception("connection refused"))

        with patch("security.login.User") as user_model:
            user_model.query.filter_by.side_effect = boom
            resp = _login(client, "alice@example.com")

        assert resp.status_code == 503

    def test_session_lookup_outage_returns_503(self, client, user, sent_emails):
        headers = _signed_in(client)
        boom = OperationalError("SELECT sessions", {}, Exception("connection refused"))

        with patch("utils.auth_context.get_session_from_request", side_effect=boom):
            resp = client.post("/auth/2fa/disable", headers=headers, json={"password": PASSWORD})

        assert resp.status_code == 503

    def test_session_store_outage_is_not_a_401(self, client, user, sent_emails):
        headers = _signed_in(client)
        boom = OperationalError("SELECT sessions", {}, Exception("connection refused"))

        with patch("security.session.Session") as session_model:
            session_model.query.filter_by.side_effect = boom
            resp = client.get("/auth/me", headers=headers)

        assert resp.status_code == 503

    def test_non_object_json_body(self, client, user, sent_emails):
        assert client.post("/auth/login", json=["alice@example.com", PASSWORD]).status_code == 400
        assert client.post("/auth/2fa/verify-login", json="123456").status_code == 400

        headers = _signed_in(client)
        assert client.post("/auth/2fa/confirm", headers=headers, json=["123456"]).status_code == 400
        assert client.post("/auth/2fa/disable", headers=headers, json=[PASSWORD]).status_code == 400

    def test_me_lists_recent_logins(self, client, user, sent_emails):
        for _ in range(3):
            _login(client, "alice@example.com", "wrong-password")
        for _ in range(3):
            _login(client, "alice@example.com")
        headers = _signed_in(client)

        recent = client.get("/auth/me", headers=headers).get_json()["recent_logins"]

        assert len(recent) == 5
        assert [r["outcome"] for r in recent] == ["success"] * 4 + ["failure"]
        assert set(recent[0]) == {"ip", "user_agent", "outcome", "created_at"}


class TestTwoFactorEndpoints:
    def test_enroll_then_two_step_login(self, client, user, sent_emails):
        headers = _signed_in(client)

        setup = client.post("/auth/2fa/setup", headers=headers)
        assert setup.status_code == 200
        secret = setup.get_json()["secret"]
        assert setup.get_json()["otpauth_uri"].startswith("otpauth://totp/")
        assert setup.get_json()["qr_code"].startswith("data:image/svg+xml;base64,")

        confirm = client.post("/auth/2fa/confirm", headers=headers, json={"code": code_at(secret)})
        assert confirm.status_code == 200
        assert client.get("/auth/2fa/status", headers=headers).get_json()["state"] == "enabled"

        first = _login(client, "alice@example.com")
        assert first.status_code == 200
        body = first.get_json()
        assert body["requires_2fa"] is True
        assert "token" not in body

        second = client.post(
            "/auth/2fa/verify-login",
            json={"challenge_token": body["challenge_token"], "code": code_at(secret)},
        )
        assert second.status_code == 200
        assert second.get_json()["token"]

    def test_wrong_second_factor_code(self, client, totp_user, sent_emails):
        user, secret = totp_user
        challenge = _login(client, user.email).get_json()["challenge_token"]
        wrong = f"{(int(code_at(secret)) + 5) % 1000000:06d}"

        resp = client.post("/auth/2fa/verify-login", json={"challenge_token": challenge, "code": wrong})

        assert resp.status_code == 401

    def test_verify_login_requires_fields(self, client):
        assert client.post("/auth/2fa/verify-login", json={"code": "123456"}).status_code == 400

    def test_setup_refused_when_enabled(self, client, totp_user, sent_emails):
        user, _ = totp_user
        headers = _bearer(_issue_session(user))

        assert client.post("/auth/2fa/setup", headers=headers).status_code == 400

    def test_confirm_errors(self, client, user, sent_emails):
        headers = _signed_in(client)

        assert client.post("/auth/2fa/confirm", headers=headers, json={}).status_code == 400
        assert client.post("/auth/2fa/confirm", headers=headers, json={"code": "123456"}).status_code == 400

        secret = client.post("/auth/2fa/setup", headers=headers).get_json()["secret"]
        wrong = f"{(int(code_at(secret)) + 5) % 1000000:06d}"
        assert client.post("/auth/2fa/confirm", headers=headers, json={"code": wrong}).status_code == 422

    def test_disable(self, client, totp_user, sent_emails):
        user, _ = totp_user
        headers = _bearer(_issue_session(user))
        other_device = _bearer(_issue_session(user))

        assert client.post("/auth/2fa/disable", headers=headers, json={"password": "nope"}).status_code == 422
        assert client.get("/auth/me", headers=other_device).status_code == 200

        resp = client.post("/auth/2fa/disable", headers=headers, json={"password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["sessions_revoked"] == 1
        assert client.get("/auth/2fa/status", headers=headers).get_json()["state"] == "disabled"
        assert client.get("/auth/me", headers=other_device).status_code == 401

    def test_endpoints_require_session(self, client):
        for path in ("/auth/2fa/setup", "/auth/2fa/confirm", "/auth/2fa/disable"):
            assert client.post(path, json={}).status_code == 401


class TestCli:
    def test_create_account(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["create-account", "Carol@Example.com", "--password", PASSWORD,
                                     "--full-name", "Carol"])

        assert "carol@example.com created" in result.output
        carol = User.query.filter_by(email="carol@example.com").one()
        assert carol.full_name == "Carol"
        assert carol.password_hash != PASSWORD

    def test_existing_account(self, app, user):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["create-account", "alice@example.com", "--password", "x"])

        assert "already exists" in result.output
