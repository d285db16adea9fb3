"""Typed outcomes returned by the authentication core.

Business failures (wrong password, locked account, bad code) come back as
results with a status; only infrastructure failures are raised, as
``AuthStoreError``, so the caller can tell "retry later" apart from
"invalid credentials".
"""
import enum
from dataclasses import dataclass, field
from typing import Optional


class AuthStoreError(Exception):
    """The account or login-event store could not be read or written."""


class LoginStatus(str, enum.Enum):
    SUCCESS = "success"
    REQUIRES_SECOND_FACTOR = "requires_second_factor"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    INVALID_CODE = "invalid_code"


@dataclass
class LoginResult:
    status: LoginStatus
    retry_after_seconds: int = 0
    challenge_token: Optional[str] = None
    session_token: Optional[str] = None
    account: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.status is LoginStatus.SUCCESS


class TwoFactorStatus(str, enum.Enum):
    STARTED = "started"
    ENABLED = "enabled"
    DISABLED = "disabled"
    INVALID_CODE = "invalid_code"
    NOT_IN_SETUP = "not_in_setup"
    INVALID_PASSWORD = "invalid_password"
    ALREADY_ENABLED = "already_enabled"


@dataclass
class TwoFactorResult:
    status: TwoFactorStatus
    # only populated by begin_setup; the one time the plaintext leaves the core
    secret: Optional[str] = field(default=None, repr=False)
    provisioning_uri: Optional[str] = field(default=None, repr=False)
    qr_code: Optional[str] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.status in (TwoFactorStatus.STARTED, TwoFactorStatus.ENABLED, TwoFactorStatus.DISABLED)
