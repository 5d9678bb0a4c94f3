"""
Operations Approval Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for mutating actions.
"""

import json
from datetime import UTC, datetime

from opsflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "requisition", "department_report", "proposal", "staff_client_report",
    "notification",
}

AUDIT_ACTIONS = {
    # Document lifecycle
    "document.submit",
    "document.advance",
    # Notification actions
    "notification.send",
    "notification.reply",
    "notification.acknowledge",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every mutating action.

    One row per action. ``metadata_json`` carries the action-specific
    payload (decision, from/to status, recipient counts, ...).
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="requisition | proposal | notification | …",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity (int-as-string)",
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="document.submit | document.advance | notification.reply | …",
    )
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system entries",
    )
    request_id = db.Column(db.String(32), nullable=True)

    metadata_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def meta(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "request_id": self.request_id,
            "metadata": self.meta,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_id: int | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    request_id = None
    try:
        from flask import g, has_request_context
        if has_request_context():
            request_id = getattr(g, "request_id", None)
    except RuntimeError:
        # Outside an application context there is no request id to attach.
        request_id = None

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        request_id=request_id,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
