"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in opsflow/__init__.py with no default
limits; this module applies granular limits per route category. The
notification send endpoint carries its own, stricter limit
(``NOTIFICATION_SEND_LIMIT``) declared on the route.

Usage:
    from opsflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Limit per authenticated actor, else per remote IP."""
    actor = getattr(g, "actor", None)
    if actor is not None:
        return f"actor:{actor.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per actor, falling back to remote IP):
        - Workflow endpoints:      60/minute
        - Notification endpoints:  200/minute
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("document_bp")
    if bp:
        limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in ("notification_bp", "audit_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — workflow: %s, notifications: %s, send: %s",
        WRITE_LIMIT, READ_LIMIT, app.config.get("NOTIFICATION_SEND_LIMIT"),
    )
