"""
Operations Approval Platform
Notification domain model.

Models:
    - Notification: in-app notification with read/acknowledge tracking and
      optional reply threading via ``parent_id``.
"""

from datetime import datetime, timezone

from opsflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {"info", "success", "warning", "error"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``sender_id`` NULL means
    system-generated; a non-NULL ``parent_id`` marks a reply.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notifications_recipient_read", "recipient_id", "is_read"),
        db.Index("idx_notifications_parent", "parent_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("notifications.id", ondelete="CASCADE"), nullable=True)

    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(20), default="info", comment="info | success | warning | error")
    link = db.Column(db.String(500), nullable=True)
    attachments = db.Column(db.JSON, default=list)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    is_acknowledged = db.Column(db.Boolean, default=False, nullable=False)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    sender = db.relationship("Actor", foreign_keys=[sender_id], lazy="joined")

    def mark_read(self):
        self.is_read = True

    def to_event(self):
        """Payload pushed to live sessions."""
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "link": self.link,
            "senderId": self.sender_id,
            "senderName": self.sender.display_name if self.sender else None,
            "parentId": self.parent_id,
            "attachments": self.attachments or [],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender.display_name if self.sender else None,
            "parent_id": self.parent_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "link": self.link,
            "attachments": self.attachments or [],
            "is_read": self.is_read,
            "is_acknowledged": self.is_acknowledged,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
