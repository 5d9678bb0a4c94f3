"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Priority order:
  1. JWT (Authorization: Bearer <token>)  →  g.jwt_user_id, g.jwt_role
  2. X-User-Id header (only when TRUST_USER_HEADER is on: dev / tests)

Invalid or expired tokens leave the request anonymous; endpoints that need
an actor reject it with 401 through ``opsflow.auth.require_actor``.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from opsflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _header_identity():
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                payload = decode_access_token(token)
                g.jwt_user_id = int(payload.get("sub"))
                g.jwt_role = payload.get("role")
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired access token on %s", path)
            except (pyjwt.InvalidTokenError, TypeError, ValueError):
                logger.warning("Invalid access token on %s", path)
            return

        if current_app.config.get("TRUST_USER_HEADER"):
            g.jwt_user_id = _header_identity()
