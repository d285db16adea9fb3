"""Mapping of database failures onto AuthStoreError."""
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.results import AuthStoreError


@contextmanager
def store_guard(message: str = "Authentication store unavailable"):
    """Rolls the session back and re-raises any SQLAlchemyError as AuthStoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise AuthStoreError(message) from exc
