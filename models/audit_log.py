from utils.clock import utcnow
from models.db import db

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)  # nullable for unknown-account attempts
    action = db.Column(db.String(80), nullable=False, index=True)  # e.g. login_failed, 2fa_enabled
    entity = db.Column(db.String(80), nullable=True)   # e.g. User
    entity_id = db.Column(db.String(80), nullable=True)
    outcome = db.Column(db.String(16), nullable=True)  # success / failure

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)  # always redacted before it lands here

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
