"""
Operations Approval Platform
Notification Fan-out Service.

Central service for creating, broadcasting, threading and acknowledging
notifications.

Delivery model:
    1. The notification row is written and committed first; that row is the
       durable guarantee.
    2. A real-time event is then attempted through the injected PushChannel.
       Push failures are absorbed into the FailureReporter (``delivery``).

Multicast (bulk / role / all) is one independent write per recipient. A
recipient whose write fails is rolled back on its own, reported under
``fanout``, and skipped; the rest of the batch proceeds.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from opsflow.core.exceptions import AuthorizationError, DeliveryError, NotFoundError, ValidationError
from opsflow.models import db
from opsflow.models.auth import ACTOR_ROLES, ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF, Actor
from opsflow.models.notification import NOTIFICATION_TYPES, Notification
from opsflow.services.failure_reporter import KIND_DELIVERY, KIND_FANOUT

logger = logging.getLogger(__name__)

EVENT_NOTIFICATION = "notification"
EVENT_SENT = "notification_sent"
EVENT_ACKNOWLEDGED = "notification_acknowledged"

# Which roles each role may address with a role broadcast
ROLE_SEND_POLICY = {
    ROLE_ADMIN: set(ACTOR_ROLES),
    ROLE_DEPARTMENT_HEAD: {ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF},
    ROLE_STAFF: {ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF},
}


class NotificationService:
    """Fan-out service. Holds its collaborators, no per-call state."""

    def __init__(self, resolver, push, reporter, audit=None):
        self.resolver = resolver
        self.push = push
        self.reporter = reporter
        self.audit = audit

    # ── Write path ────────────────────────────────────────────────────────

    @staticmethod
    def _validate(title, type_):
        if not (title or "").strip():
            raise ValidationError("title is required", details={"title": "missing"})
        if type_ not in NOTIFICATION_TYPES:
            raise ValidationError(
                f"Invalid type. Must be one of: {sorted(NOTIFICATION_TYPES)}",
                details={"type": type_},
            )

    @staticmethod
    def _active_recipients(recipient_ids) -> set[int]:
        """Subset of ``recipient_ids`` that are active directory actors."""
        wanted = {r for r in recipient_ids if isinstance(r, int)}
        if not wanted:
            return set()
        rows = db.session.query(Actor.id).filter(Actor.id.in_(wanted), Actor.is_active.is_(True)).all()
        return {row[0] for row in rows}

    def _persist(self, recipient_id, *, title, message="", type="info", link=None,
                 sender_id=None, attachments=None, parent_id=None) -> Notification:
        notif = Notification(
            recipient_id=recipient_id,
            sender_id=sender_id,
            parent_id=parent_id,
            title=title.strip(),
            message=message or "",
            type=type,
            link=link,
            attachments=list(attachments or []),
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    def _publish(self, user_id, event_name, payload, notification_id=None):
        """Best-effort push. Never raises."""
        try:
            self.push.publish_to_user(user_id, event_name, payload)
        except Exception as exc:
            err = exc if isinstance(exc, DeliveryError) else DeliveryError(user_id, event_name, exc)
            self.reporter.report(
                KIND_DELIVERY, err,
                user_id=user_id, event=event_name, notification_id=notification_id,
            )

    def _deliver(self, notif: Notification):
        self._publish(notif.recipient_id, EVENT_NOTIFICATION, notif.to_event(), notif.id)
        if notif.sender_id and notif.sender_id != notif.recipient_id:
            self._publish(
                notif.sender_id, EVENT_SENT,
                {"notificationId": notif.id, "recipientId": notif.recipient_id, "title": notif.title},
                notif.id,
            )

    def notify_user(self, recipient_id, *, title, message="", type="info", link=None,
                    sender_id=None, attachments=None) -> int:
        """Persist one notification, then attempt a push. Returns its id.

        A failed write is surfaced; a failed push is not.

        Raises:
            NotFoundError: ``recipient_id`` is not an active actor.
        """
        self._validate(title, type)
        if recipient_id not in self._active_recipients([recipient_id]):
            raise NotFoundError(resource="Actor", resource_id=recipient_id)
        try:
            notif = self._persist(
                recipient_id, title=title, message=message, type=type, link=link,
                sender_id=sender_id, attachments=attachments,
            )
        except SQLAlchemyError:
            db.session.rollback()
            raise
        self._deliver(notif)
        return notif.id

    def notify_bulk(self, recipient_ids, *, title, message="", type="info", link=None,
                    sender_id=None, attachments=None) -> list[int]:
        """One independent write per recipient. Partial success is accepted.

        Returns the ids that were written, in recipient order. Duplicate
        recipient ids are collapsed. Ids that are not active actors are
        skipped and reported under ``fanout``.
        """
        self._validate(title, type)
        recipient_ids = list(recipient_ids)
        try:
            active = self._active_recipients(recipient_ids)
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.reporter.report(KIND_FANOUT, exc, recipients=len(recipient_ids), title=title)
            return []
        created = []
        seen = set()
        for recipient_id in recipient_ids:
            if recipient_id in seen:
                continue
            seen.add(recipient_id)
            if recipient_id not in active:
                self.reporter.report(
                    KIND_FANOUT, message=f"No active actor {recipient_id}",
                    recipient_id=recipient_id, title=title,
                )
                continue
            try:
                notif = self._persist(
                    recipient_id, title=title, message=message, type=type, link=link,
                    sender_id=sender_id, attachments=attachments,
                )
            except SQLAlchemyError as exc:
                db.session.rollback()
                self.reporter.report(KIND_FANOUT, exc, recipient_id=recipient_id, title=title)
                continue
            self._deliver(notif)
            created.append(notif.id)

        if len(created) < len(seen):
            logger.warning("Fan-out '%s' reached %d of %d recipients", title, len(created), len(seen))
        return created

    def notify_role(self, role, **fields) -> list[int]:
        """Fan out to the actors active with ``role`` right now."""
        if role not in ACTOR_ROLES:
            raise ValidationError(f"Unknown role '{role}'", details={"role": f"must be one of {sorted(ACTOR_ROLES)}"})
        return self.notify_bulk(self.resolver.active_ids_for_role(role), **fields)

    def notify_all(self, actor, **fields) -> list[int]:
        """Fan out to every active actor. Admin only."""
        if actor is None or not actor.is_admin:
            raise AuthorizationError("Only Admin can send to all users", actor_id=getattr(actor, "id", None))
        return self.notify_bulk(self.resolver.all_active_ids(), **fields)

    @staticmethod
    def authorize_role_send(actor, role):
        allowed = ROLE_SEND_POLICY.get(actor.role, set())
        if role not in allowed:
            raise AuthorizationError(f"{actor.role} cannot send to role {role}", actor_id=actor.id)

    # ── Threads ───────────────────────────────────────────────────────────

    def _get(self, notification_id) -> Notification:
        notif = db.session.get(Notification, notification_id)
        if notif is None:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        return notif

    def reply(self, parent_id, sender_id, message, *, type="info", attachments=None) -> int:
        """Reply to a notification. The recipient is the parent's sender, or
        its recipient when the parent was system-generated."""
        parent = self._get(parent_id)
        if sender_id not in (parent.sender_id, parent.recipient_id):
            raise AuthorizationError("Only thread participants can reply", actor_id=sender_id)
        if not (message or "").strip():
            raise ValidationError("message is required", details={"message": "missing"})

        recipient_id = parent.sender_id or parent.recipient_id
        if recipient_id == sender_id:
            raise ValidationError("Cannot reply to your own notification")

        title = f"Re: {parent.title}"
        self._validate(title, type)
        notif = self._persist(
            recipient_id, title=title, message=message, type=type,
            link=parent.link, sender_id=sender_id, attachments=attachments,
            parent_id=parent.id,
        )
        self._deliver(notif)
        if self.audit is not None:
            self.audit.record(
                sender_id, "notification.reply", "notification", notif.id,
                {"parent_id": parent.id, "recipient_id": recipient_id},
            )
        return notif.id

    def acknowledge(self, notification_id, actor_id) -> Notification:
        """Idempotent: only the first call sets ``acknowledged_at``."""
        notif = self._get(notification_id)
        if notif.recipient_id != actor_id:
            raise AuthorizationError("Only the recipient can acknowledge", actor_id=actor_id)
        if notif.is_acknowledged:
            return notif

        notif.is_acknowledged = True
        notif.acknowledged_at = datetime.now(timezone.utc)
        notif.is_read = True
        db.session.commit()
        logger.info("Notification %s acknowledged", notif.id, extra={"notification_id": notif.id, "actor_id": actor_id})

        if notif.sender_id:
            self._publish(
                notif.sender_id, EVENT_ACKNOWLEDGED,
                {
                    "notificationId": notif.id,
                    "acknowledgedBy": actor_id,
                    "acknowledgedAt": notif.acknowledged_at.isoformat(),
                },
                notif.id,
            )
        if self.audit is not None:
            self.audit.record(actor_id, "notification.acknowledge", "notification", notif.id)
        return notif

    def thread(self, notification_id, actor_id) -> dict:
        """Parent plus direct replies, oldest first. Participants only."""
        parent = self._get(notification_id)
        if actor_id not in (parent.sender_id, parent.recipient_id):
            raise AuthorizationError("Not a participant of this thread", actor_id=actor_id)
        replies = (
            Notification.query.filter_by(parent_id=parent.id)
            .order_by(Notification.created_at.asc(), Notification.id.asc())
            .all()
        )
        return {"parent": parent, "replies": replies}

    # ── Inbox ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Notifications addressed to ``user_id``, newest first.

        Returns:
            (items, total) where each item is a dict with ``reply_count``.
        """
        q = Notification.query.filter(Notification.recipient_id == user_id)
        if unread_only:
            q = q.filter(Notification.is_read.is_(False))
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )

        counts = {}
        ids = [n.id for n in items]
        if ids:
            rows = (
                db.session.query(Notification.parent_id, db.func.count(Notification.id))
                .filter(Notification.parent_id.in_(ids))
                .group_by(Notification.parent_id)
                .all()
            )
            counts = dict(rows)

        result = []
        for n in items:
            d = n.to_dict()
            d["reply_count"] = counts.get(n.id, 0)
            result.append(d)
        return result, total

    @staticmethod
    def unread_count(user_id) -> int:
        return Notification.query.filter(
            Notification.recipient_id == user_id, Notification.is_read.is_(False),
        ).count()

    def mark_read(self, notification_id, actor_id) -> Notification:
        notif = self._get(notification_id)
        if notif.recipient_id != actor_id:
            raise AuthorizationError("Only the recipient can mark a notification read", actor_id=actor_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id) -> int:
        count = Notification.query.filter(
            Notification.recipient_id == user_id, Notification.is_read.is_(False),
        ).update({"is_read": True}, synchronize_session="fetch")
        db.session.commit()
        return count
