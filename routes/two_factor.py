from flask import Blueprint, request, jsonify, g

from security import two_factor
from security.results import TwoFactorStatus
from security.session import revoke_other_sessions
from utils.auth_context import client_origin, json_body, login_required

two_factor_bp = Blueprint("two_factor", __name__, url_prefix="/auth/2fa")


@two_factor_bp.get("/status")
@login_required
def status():
    return jsonify(state=two_factor.state_of(g.user), two_factor_enabled=g.user.two_factor_enabled), 200


@two_factor_bp.post("/setup")
@login_required
def setup():
    ip, user_agent = client_origin(request)
    result = two_factor.begin_setup(g.user, ip=ip, user_agent=user_agent)
    if result.status is TwoFactorStatus.ALREADY_ENABLED:
        return jsonify(error="2FA is already enabled. Disable it before setting it up again."), 400

    return jsonify(
        secret=result.secret,
        otpauth_uri=result.provisioning_uri,
        qr_code=result.qr_code,
        message="Scan the code with your authenticator app and confirm with a 6-digit code.",
    ), 200


@two_factor_bp.post("/confirm")
@login_required
def confirm():
    data = json_body(request)
    code = data.get("code") or ""
    if not isinstance(code, str) or not code:
        return jsonify(error="code is required"), 400

    ip, user_agent = client_origin(request)
    result = two_factor.confirm_setup(g.user, code, ip=ip, user_agent=user_agent)
    if result.status is TwoFactorStatus.NOT_IN_SETUP:
        return jsonify(error="Please set up 2FA first."), 400
    if result.status is TwoFactorStatus.INVALID_CODE:
        return jsonify(error="The verification code is invalid."), 422

    return jsonify(message="2FA has been enabled.", two_factor_enabled=True), 200


@two_factor_bp.post("/disable")
@login_required
def disable():
    data = json_body(request)
    password = data.get("password") or ""
    if not isinstance(password, str) or not password:
        return jsonify(error="password is required"), 400

    ip, user_agent = client_origin(request)
    result = two_factor.disable(g.user, password, ip=ip, user_agent=user_agent)
    if result.status is TwoFactorStatus.INVALID_PASSWORD:
        return jsonify(error="The provided password is incorrect."), 422

    # other devices signed in under the old second factor must log in again
    signed_out = revoke_other_sessions(g.user.id, keep_session_id=g.session.id)
    return jsonify(message="2FA has been disabled.", two_factor_enabled=False, sessions_revoked=signed_out), 200
