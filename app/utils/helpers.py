"""Shared helpers for blueprints and services.

parse_date:          lenient ISO date parsing, None on bad input
db_commit_or_error:  commit at the end of a route with uniform error responses
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse ``YYYY-MM-DD`` or an ISO datetime (``Z`` suffix allowed) to a date.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def db_commit_or_error():
    """Commit the session; on failure roll back and return an error response.

    Services only flush, so this is the single commit point of a request:

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError   → 409 ERR_CONFLICT_DUPLICATE
    any other DB error → 500 ERR_DATABASE
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")
