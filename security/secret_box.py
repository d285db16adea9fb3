"""
Sealing of second-factor secrets at rest.

Fernet (AES-128-CBC + HMAC-SHA256) from ``cryptography``. The key comes from
TWO_FACTOR_ENCRYPTION_KEY when set, otherwise it is derived from SECRET_KEY.
Sealed values are opaque and not meant for display.
"""
import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


class SecretBoxError(Exception):
    """A sealed secret could not be opened with the configured key."""


def _fernet() -> Fernet:
    key = current_app.config.get("TWO_FACTOR_ENCRYPTION_KEY")
    if key:
        return Fernet(key.encode("ascii") if isinstance(key, str) else key)
    material = hashlib.sha256(
        b"payconsole-2fa:" + current_app.config["SECRET_KEY"].encode("utf-8")
    ).digest()
    return Fernet(base64.urlsafe_b64encode(material))


def seal(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def unseal(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except (InvalidToken, ValueError) as exc:
        raise SecretBoxError("Stored two-factor secret cannot be decrypted") from exc
