from functools import wraps
from flask import g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.user import User
from security.results import AuthStoreError
from security.session import get_session_from_request

def load_current_user():
    g.user = None
    g.session = None
    try:
        sess = get_session_from_request()
        if not sess:
            return
        g.session = sess
        g.user = db.session.get(User, sess.user_id)
    except SQLAlchemyError as exc:
        # a store outage is not the same as "not signed in"
        db.session.rollback()
        raise AuthStoreError("Session store unavailable") from exc

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper

def client_origin(req):
    """(ip, user_agent) of the calling client."""
    ip = req.headers.get("X-Forwarded-For", req.remote_addr) or "unknown"
    return ip.split(",")[0].strip(), (req.headers.get("User-Agent") or "Unknown")

def json_body(req) -> dict:
    """The request's JSON object, or {} for anything else (missing, malformed, array, scalar)."""
    data = req.get_json(silent=True)
    return data if isinstance(data, dict) else {}
