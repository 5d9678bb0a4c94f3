"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — liveness with dependency status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from opsflow.models import db
from opsflow.services.failure_reporter import FAILURE_KINDS

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1")


@health_bp.route("/health", methods=["GET"])
def health():
    """Liveness check: database, push channel, absorbed-failure counters."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Push channel (optional, never fails overall health) ──────────
    push = current_app.extensions["push_channel"]
    checks["push_channel"] = {
        "status": "ok" if push.ping() else "degraded",
        "transport": push.name,
    }

    # ── Absorbed failures ────────────────────────────────────────────
    reporter = current_app.extensions["failure_reporter"]
    checks["absorbed_failures"] = {
        kind: reporter.count(kind) for kind in sorted(FAILURE_KINDS)
    }

    return jsonify({
        "status": "ok" if overall else "degraded",
        "checks": checks,
    }), 200 if overall else 503
