"""
Operations Approval Platform
Document workflow blueprint.

Endpoints:
    POST /api/v1/documents/<doc_type>        — submit a document
    POST /api/v1/documents/<id>/advance      — apply a reviewer decision
    GET  /api/v1/documents/<id>              — document with stage history
    GET  /api/v1/documents                   — visible documents (?type=&status=)
    GET  /api/v1/documents/pending           — caller's review queue

The engine owns every commit; routes only parse input and shape output.
"""

import logging

from flask import Blueprint, g, jsonify, request

from opsflow.auth import require_actor
from opsflow.blueprints import page_args, register_domain_error_handlers, service
from opsflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

document_bp = Blueprint("document_bp", __name__, url_prefix="/api/v1")
register_domain_error_handlers(document_bp)


def _engine():
    return service("workflow_engine")


@document_bp.route("/documents/pending", methods=["GET"])
@require_actor
def pending_documents():
    """Documents awaiting a decision the caller is allowed to make."""
    docs = _engine().pending_for(g.actor)
    return jsonify({
        "items": [d.to_dict(include_stages=False) for d in docs],
        "total": len(docs),
    })


@document_bp.route("/documents", methods=["GET"])
@require_actor
def list_documents():
    """
    Documents visible to the caller, newest first.

    Query params:
        type    — document type filter
        status  — status filter
        limit / offset
    """
    docs = _engine().list_documents(
        g.actor,
        doc_type=request.args.get("type") or None,
        status=request.args.get("status") or None,
    )
    limit, offset = page_args()
    return jsonify({
        "items": [d.to_dict(include_stages=False) for d in docs[offset:offset + limit]],
        "total": len(docs),
    })


@document_bp.route("/documents/<int:doc_id>", methods=["GET"])
@require_actor
def get_document(doc_id):
    doc = _engine().get_document(doc_id, g.actor)
    return jsonify(doc.to_dict())


@document_bp.route("/documents/<string:doc_type>", methods=["POST"])
@require_actor
def submit_document(doc_type):
    """Submit a new document; body is the type-specific content."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")

    doc = _engine().submit(doc_type, g.actor, data)
    return jsonify(doc.to_dict()), 201


@document_bp.route("/documents/<int:doc_id>/advance", methods=["POST"])
@require_actor
def advance_document(doc_id):
    """
    Apply a reviewer decision.

    Body: {decision, notes?, expectedStatus?}
    """
    data = request.get_json(silent=True) or {}
    decision = (data.get("decision") or "").strip()
    if not decision:
        return api_error(E.VALIDATION_REQUIRED, "decision is required")

    doc = _engine().advance(
        doc_id,
        g.actor,
        decision,
        notes=data.get("notes"),
        expected_status=data.get("expectedStatus") or data.get("expected_status"),
    )
    return jsonify(doc.to_dict())
