"""
Operations Approval Platform
Audit blueprint.

Endpoints:
    GET  /api/v1/audit-logs  — list / filter audit rows (Admin only)
"""

from flask import Blueprint, jsonify, request

from opsflow.auth import require_role
from opsflow.blueprints import paginate_query, service
from opsflow.models.auth import ROLE_ADMIN

audit_bp = Blueprint("audit_bp", __name__, url_prefix="/api/v1")


@audit_bp.route("/audit-logs", methods=["GET"])
@require_role(ROLE_ADMIN)
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        entity_type  — filter by entity type (e.g. requisition, notification)
        entity_id    — filter by entity PK
        action       — filter by action string
        actor_id     — filter by actor
        limit / offset
    """
    q = service("audit_service").query(
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
        action=request.args.get("action") or None,
        actor_id=request.args.get("actor_id", type=int),
    )
    items, total = paginate_query(q)
    return jsonify({
        "audit_logs": [log.to_dict() for log in items],
        "total": total,
    })
