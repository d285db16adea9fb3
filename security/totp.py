"""
Time-based one-time codes (RFC 6238) for the second factor.

Six digits, 30-second steps, SHA-1, as every mainstream authenticator app
expects. Verification accepts the current step and TOTP_VALID_WINDOW steps
either side of it; pyotp compares candidates in constant time.
"""
import base64
import calendar
import io
import re
import time
from datetime import datetime
from typing import Optional, Union

import pyotp
import qrcode
import qrcode.image.svg
from flask import current_app, has_app_context

DIGITS = 6
INTERVAL = 30

_CODE_RE = re.compile(r"^\d{%d}$" % DIGITS)

Moment = Union[datetime, int, float, None]


def _timestamp(when: Moment) -> int:
    if when is None:
        return int(time.time())
    if isinstance(when, datetime):
        # naive datetimes are UTC throughout this app
        return calendar.timegm(when.utctimetuple())
    return int(when)


def _valid_window() -> int:
    if has_app_context():
        return int(current_app.config.get("TOTP_VALID_WINDOW", 1))
    return 1


def generate_secret() -> str:
    """160-bit random base32 secret."""
    return pyotp.random_base32(length=32)


def provisioning_uri(secret: str, account_name: str, issuer: Optional[str] = None) -> str:
    if issuer is None and has_app_context():
        issuer = current_app.config.get("TOTP_ISSUER")
    return pyotp.TOTP(secret, digits=DIGITS, interval=INTERVAL).provisioning_uri(
        name=account_name, issuer_name=issuer
    )


def qr_code_data_uri(uri: str) -> str:
    """SVG QR code of an otpauth:// URI, as a data: URI ready for an <img> tag."""
    qr = qrcode.QRCode(box_size=10, border=4, image_factory=qrcode.image.svg.SvgPathImage)
    qr.add_data(uri)
    qr.make(fit=True)

    buf = io.BytesIO()
    qr.make_image().save(buf)
    return "data:image/svg+xml;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def code_at(secret: str, when: Moment = None) -> str:
    return pyotp.TOTP(secret, digits=DIGITS, interval=INTERVAL).at(_timestamp(when))


def verify_code(secret: str, code: str, now: Moment = None) -> bool:
    """
    True iff code matches the step containing now or a neighbouring step.
    Pure: reads no state beyond its arguments and the configured window.
    """
    if not secret or not isinstance(code, str):
        return False
    code = code.strip()
    if not _CODE_RE.match(code):
        return False
    totp = pyotp.TOTP(secret, digits=DIGITS, interval=INTERVAL)
    return totp.verify(code, for_time=_timestamp(now), valid_window=_valid_window())
