from utils.clock import utcnow
from models.db import db


class User(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("failed_login_attempts >= 0", name="ck_users_failed_login_attempts"),
    )

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)

    balance = db.Column(db.Numeric(15, 2), default=0, nullable=False)
    currency = db.Column(db.String(3), default="USD", nullable=False)

    # Lockout counters; only security.lockout writes these
    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    last_failed_login_at = db.Column(db.DateTime, nullable=True)
    locked_until = db.Column(db.DateTime, nullable=True)

    # Fernet token, never the plaintext secret; only security.two_factor writes these
    two_factor_secret = db.Column(db.Text, nullable=True)
    two_factor_enabled = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<User {self.id} {self.email}>"
