from utils.clock import utcnow
from models.db import db

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"


class LoginEvent(db.Model):
    """One row per concluded login attempt. Rows are written once and never updated."""

    __tablename__ = "login_events"
    __table_args__ = (
        db.Index("ix_login_events_user_outcome_created", "user_id", "outcome", "created_at"),
        db.CheckConstraint("outcome IN ('success', 'failure')", name="ck_login_events_outcome"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # NULL when the submitted identifier matched no account
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    outcome = db.Column(db.String(16), nullable=False)
    failure_reason = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

    @property
    def successful(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS
