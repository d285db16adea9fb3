from .db import db
from .user import User
from .audit_log import AuditLog
from .session import Session
from .login_event import LoginEvent
from .login_challenge import LoginChallenge
