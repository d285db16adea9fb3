"""
Test configuration and fixtures.

Every test gets a fresh app bound to its own SQLite file, with background
work forced inline and outbound email captured instead of sent.
"""

import os
import sys

from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app  # noqa: E402
from models import db  # noqa: E402
from models.user import User  # noqa: E402
from security.password import hash_password  # noqa: E402
from security.secret_box import seal  # noqa: E402
from security.totp import generate_secret  # noqa: E402
from tests.helpers import PASSWORD  # noqa: E402


@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "BACKGROUND_TASKS_ASYNC": False,
        "SMTP_HOST": None,
        "LOG_LEVEL": "WARNING",
        "MAX_LOGIN_ATTEMPTS": 5,
        "LOCKOUT_MINUTES": 15,
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sent_emails():
    """Captures (to, subject, body) for every notification handed to the mailer."""
    outbox = []

    def _fake_send(to_email, subject, body):
        outbox.append((to_email, subject, body))
        return True, None

    with patch("utils.notifications.send_email", side_effect=_fake_send):
        yield outbox


@pytest.fixture
def make_user(app, password_hash):
    counter = {"n": 0}

    def _make(email=None, **fields):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            password_hash=password_hash,
            full_name=fields.pop("full_name", "Test User"),
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user(email="alice@example.com")


@pytest.fixture
def totp_user(make_user):
    """Account with 2FA enabled. Returns (user, plaintext secret)."""
    secret = generate_secret()
    user = make_user(email="bob@example.com", two_factor_secret=seal(secret), two_factor_enabled=True)
    return user, secret
