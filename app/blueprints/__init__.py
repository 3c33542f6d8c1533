"""
Product Workspace Platform
Blueprint registry and shared blueprint helpers.
"""

import logging

from flask import request

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.models import db
from app.utils.errors import service_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON responses for one blueprint.

    The session is rolled back first so flushed but uncommitted work from
    the failed operation never reaches a later commit.
    """

    @bp.errorhandler(NotFoundError)
    @bp.errorhandler(ValidationError)
    @bp.errorhandler(ConflictError)
    @bp.errorhandler(PermissionDeniedError)
    def _handle_service_error(error):
        db.session.rollback()
        if not isinstance(error, NotFoundError):
            logger.info("%s on %s %s: %s", type(error).__name__, request.method,
                        request.path, error)
        return service_error(error)
