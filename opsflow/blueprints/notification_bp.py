"""
Operations Approval Platform
Notification Blueprint.

Provides:
    - Inbox: list, unread count, mark read, mark all read
    - Direct send to users, a role, or everyone
    - Threaded replies, acknowledgement, thread view

All routes act on behalf of ``g.actor``; the recipient of an inbox query is
always the caller.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from opsflow import limiter
from opsflow.auth import require_actor
from opsflow.blueprints import page_args, register_domain_error_handlers, service
from opsflow.middleware.rate_limiter import rate_limit_key
from opsflow.models.auth import ACTOR_ROLES
from opsflow.models.notification import NOTIFICATION_TYPES
from opsflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_domain_error_handlers(notification_bp)


def _notifier():
    return service("notification_service")


def _send_limit():
    return current_app.config.get("NOTIFICATION_SEND_LIMIT", "30/minute")


# ═══════════════════════════════════════════════════════════════════════════
#  INBOX
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
@require_actor
def list_notifications():
    """
    Caller's notifications, newest first.

    Query params:
        unread_only — "true" to return unread only
        limit / offset
    """
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    limit, offset = page_args()
    items, total = _notifier().list_for_user(g.actor.id, unread_only=unread_only, limit=limit, offset=offset)
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_actor
def unread_count():
    return jsonify({"unread_count": _notifier().unread_count(g.actor.id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PUT"])
@require_actor
def mark_read(nid):
    notif = _notifier().mark_read(nid, g.actor.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["PUT"])
@require_actor
def mark_all_read():
    count = _notifier().mark_all_read(g.actor.id)
    return jsonify({"marked_read": count})


# ═══════════════════════════════════════════════════════════════════════════
#  SEND
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/send", methods=["POST"])
@limiter.limit(_send_limit, key_func=rate_limit_key)
@require_actor
def send_notification():
    """
    Send a notification.

    Body: {
        title, message?, type?, link?, attachments?,
        one of: userIds: [int] | role: str | sendToAll: true
    }
    Returns: {"sent": <count>, "ids": [...]} (201). A multicast that reaches
    only part of its audience still returns 201 with the ids written.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")

    title = (data.get("title") or "").strip()
    if not title:
        return api_error(E.VALIDATION_REQUIRED, "title is required")

    type_ = data.get("type", "info")
    if type_ not in NOTIFICATION_TYPES:
        return api_error(E.VALIDATION_INVALID, f"Invalid type. Must be one of: {sorted(NOTIFICATION_TYPES)}")

    attachments = data.get("attachments") or []
    if not isinstance(attachments, list):
        return api_error(E.VALIDATION_INVALID, "attachments must be a list")

    fields = {
        "title": title,
        "message": data.get("message", ""),
        "type": type_,
        "link": data.get("link"),
        "attachments": attachments,
        "sender_id": g.actor.id,
    }

    notifier = _notifier()
    actor = g.actor
    if data.get("sendToAll"):
        ids = notifier.notify_all(actor, **fields)
        target = {"all": True}
    elif data.get("role"):
        role = data["role"]
        if role not in ACTOR_ROLES:
            return api_error(E.VALIDATION_INVALID, f"Unknown role. Must be one of: {sorted(ACTOR_ROLES)}")
        notifier.authorize_role_send(actor, role)
        ids = notifier.notify_role(role, **fields)
        target = {"role": role}
    elif data.get("userIds"):
        user_ids = data["userIds"]
        if not isinstance(user_ids, list):
            return api_error(E.VALIDATION_INVALID, "userIds must be a list")
        try:
            user_ids = [int(u) for u in user_ids]
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "userIds must contain integers")
        if len(user_ids) == 1:
            ids = [notifier.notify_user(user_ids[0], **fields)]
        else:
            ids = notifier.notify_bulk(user_ids, **fields)
        target = {"user_ids": user_ids}
    else:
        return api_error(E.VALIDATION_REQUIRED, "One of userIds, role or sendToAll is required")

    service("audit_service").record(
        actor.id, "notification.send", "notification", ids[0] if ids else "-",
        {"target": target, "sent": len(ids), "title": title},
    )
    return jsonify({"sent": len(ids), "ids": ids}), 201


# ═══════════════════════════════════════════════════════════════════════════
#  THREADS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications/<int:nid>/reply", methods=["POST"])
@require_actor
def reply(nid):
    """Body: {message, type?, attachments?}"""
    data = request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()
    if not message:
        return api_error(E.VALIDATION_REQUIRED, "message is required")

    attachments = data.get("attachments") or []
    if not isinstance(attachments, list):
        return api_error(E.VALIDATION_INVALID, "attachments must be a list")

    reply_id = _notifier().reply(
        nid, g.actor.id, message,
        type=data.get("type", "info"),
        attachments=attachments,
    )
    return jsonify({"id": reply_id, "parent_id": nid}), 201


@notification_bp.route("/notifications/<int:nid>/acknowledge", methods=["PUT"])
@require_actor
def acknowledge(nid):
    notif = _notifier().acknowledge(nid, g.actor.id)
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/<int:nid>/thread", methods=["GET"])
@require_actor
def thread(nid):
    result = _notifier().thread(nid, g.actor.id)
    return jsonify({
        "parent": result["parent"].to_dict(),
        "replies": [r.to_dict() for r in result["replies"]],
    })
