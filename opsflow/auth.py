"""
Operations Approval Platform
Identity & authorization seam.

Provides:
    - ``init_auth(app)``: loads the verified actor for the request into
      ``g.actor`` (an ``ActorContext``) after the JWT middleware has set
      ``g.jwt_user_id``.
    - ``require_actor``: 401 unless an active actor is attached.
    - ``require_role``: 403 unless the actor holds one of the given roles.

The identity provider is trusted as-is: whatever actor id it vouches for is
loaded from the directory, inactive actors are treated as anonymous.
"""

import functools
import logging

from flask import current_app, g, jsonify

from opsflow.services.actor_resolver import ActorResolver

logger = logging.getLogger(__name__)


def get_current_actor():
    """Return the ActorContext for this request, or None."""
    return getattr(g, "actor", None)


def init_auth(app):
    """Register the actor-loading before_request hook.

    Must run after ``init_jwt_middleware`` so ``g.jwt_user_id`` is set.
    """

    @app.before_request
    def _load_actor():
        g.actor = None
        actor_id = getattr(g, "jwt_user_id", None)
        if actor_id is None:
            return
        resolver: ActorResolver = current_app.extensions["actor_resolver"]
        g.actor = resolver.load(actor_id)
        if g.actor is None:
            logger.warning("Identity %s has no active directory entry", actor_id)


def require_actor(f):
    """Decorator: reject anonymous requests with 401."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if get_current_actor() is None:
            return jsonify({"error": "Authentication required", "code": "ERR_UNAUTHORIZED"}), 401
        return f(*args, **kwargs)

    return decorated


def require_role(*roles):
    """
    Decorator: require the actor to hold one of ``roles``.

    Usage:
        @bp.route("/audit-logs")
        @require_role("Admin")
        def list_audit_logs():
            ...
    """

    def decorator(f):
        @functools.wraps(f)
        @require_actor
        def decorated(*args, **kwargs):
            actor = get_current_actor()
            if actor.role not in roles:
                logger.warning(
                    "Access denied: actor %s (role=%s) needs one of %s",
                    actor.id, actor.role, roles,
                )
                return jsonify({
                    "error": "Insufficient permissions",
                    "code": "ERR_FORBIDDEN",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)

        return decorated

    return decorator
