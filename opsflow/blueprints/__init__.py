"""
Operations Approval Platform
Blueprint registry and shared helpers.
"""

import logging

from flask import current_app, request

from opsflow.core.exceptions import AuthorizationError, InvalidStateTransition, NotFoundError, ValidationError
from opsflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    limit, offset = page_args(default_limit, max_limit)
    items = query.limit(limit).offset(offset).all()
    return items, total


def page_args(default_limit=50, max_limit=200):
    """Parse ``limit`` / ``offset`` query params leniently."""
    try:
        limit = max(1, min(int(request.args.get("limit", default_limit)), max_limit))
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def service(name):
    """Service instance wired by the app factory."""
    return current_app.extensions[name]


def register_domain_error_handlers(bp):
    """Map the domain exception hierarchy onto ``bp``'s JSON error bodies."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_DOMAIN, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(InvalidStateTransition)
    def _handle_conflict(error: InvalidStateTransition):
        details = {"current_status": error.current_status}
        if error.expected_status:
            details["expected_status"] = error.expected_status
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    return bp
