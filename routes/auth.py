from flask import Blueprint, request, jsonify, g

from security.login import account_summary, authenticate, recent_logins, verify_second_factor
from security.results import LoginStatus
from security.session import bearer_token_from_request, revoke_session
from utils.audit import log_event
from utils.auth_context import client_origin, json_body, login_required


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

# one message for unknown account and wrong password
INVALID_CREDENTIALS_MESSAGE = "The provided credentials are incorrect."


def _login_response(result):
    if result.status is LoginStatus.SUCCESS:
        return jsonify(message="Login successful", token=result.session_token, user=result.account), 200

    if result.status is LoginStatus.REQUIRES_SECOND_FACTOR:
        return jsonify(
            requires_2fa=True,
            challenge_token=result.challenge_token,
            message="Please enter your 2FA code.",
        ), 200

    if result.status is LoginStatus.ACCOUNT_LOCKED:
        return jsonify(
            error="Account temporarily locked. Try again later.",
            retry_after_seconds=result.retry_after_seconds,
        ), 423

    if result.status is LoginStatus.INVALID_CODE:
        return jsonify(error="The verification code is invalid."), 401

    return jsonify(error=INVALID_CREDENTIALS_MESSAGE), 401


@auth_bp.post("/login")
def login():
    data = json_body(request)
    email = data.get("email") or ""
    password = data.get("password") or ""

    if not isinstance(email, str) or not isinstance(password, str) or not email or not password:
        return jsonify(error="Email and password are required"), 400

    ip, user_agent = client_origin(request)
    return _login_response(authenticate(email, password, ip=ip, user_agent=user_agent))


@auth_bp.post("/2fa/verify-login")
def verify_login():
    data = json_body(request)
    challenge_token = data.get("challenge_token") or ""
    code = data.get("code") or ""

    if not isinstance(challenge_token, str) or not isinstance(code, str) or not challenge_token or not code:
        return jsonify(error="challenge_token and code are required"), 400

    ip, user_agent = client_origin(request)
    return _login_response(verify_second_factor(challenge_token, code, ip=ip, user_agent=user_agent))


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(user=account_summary(g.user), recent_logins=recent_logins(g.user)), 200


@auth_bp.post("/logout")
@login_required
def logout():
    revoke_session(bearer_token_from_request())
    ip, user_agent = client_origin(request)
    log_event("user_logout", user_id=g.user.id, entity="User", entity_id=g.user.id,
              outcome="success", ip=ip, user_agent=user_agent)
    return jsonify(message="Logged out"), 200
