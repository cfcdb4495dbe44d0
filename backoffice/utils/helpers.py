"""Shared utility functions for services and blueprints.

parse_date:          lenient (None on bad input)
parse_date_input:    strict (raises ValidationError with the caller's code)
parse_int:           optional integer coercion for query params / payloads
db_commit_or_raise:  commit, or roll back and raise SystemError
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.exceptions import SystemError, ValidationError
from backoffice.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, code: str, field: str):
    """Parse an optional date, raising ValidationError(code) on bad input.

    Empty input returns None; callers decide whether the field is required.
    """
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(code, f"{field} must be a date (YYYY-MM-DD)", details={field: value})
    return parsed


def parse_int(value):
    """Coerce *value* to int, returning None for empty, non-numeric or fractional input."""
    if value is None or value == "":
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clean_str(value):
    """Strip a string value; None and non-strings become ''."""
    if value is None:
        return ""
    return str(value).strip()


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_raise():
    """Commit the current SQLAlchemy session, raising SystemError on failure.

    Usage::

        db_commit_or_raise()

    The session is rolled back before raising so that the failed
    operation leaves no partial rows (including its audit entry).
    """
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise SystemError(str(getattr(exc, "orig", None) or exc)) from exc
