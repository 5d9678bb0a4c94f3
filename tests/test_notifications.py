"""
Notification Fan-out Service tests.

Tests cover:
  - Single send: persist first, push after, sender echo
  - Bulk / role / all fan-out, including partial failure
  - Reply recipient resolution and the no-self-reply rule
  - Acknowledge idempotency and the acknowledged event
  - Thread ordering and access
  - Inbox queries
"""
import pytest
from sqlalchemy.exc import OperationalError

from opsflow.core.exceptions import AuthorizationError, DeliveryError, NotFoundError, ValidationError
from opsflow.models import db
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF
from opsflow.models.notification import Notification


def _get(nid):
    return db.session.get(Notification, nid)


# ═════════════════════════════════════════════════════════════════════════
# SINGLE SEND
# ═════════════════════════════════════════════════════════════════════════

class TestNotifyUser:
    def test_persists_and_pushes(self, notifier, push, org):
        nid = notifier.notify_user(
            org.ops_staff.id, title="Hello", message="Welcome", type="success",
            link="/documents/1", attachments=["files/a.pdf"],
        )
        notif = _get(nid)
        assert notif.recipient_id == org.ops_staff.id
        assert notif.sender_id is None
        assert notif.attachments == ["files/a.pdf"]
        assert notif.is_read is False

        events = push.events_for(org.ops_staff.id, "notification")
        assert len(events) == 1
        assert events[0][1]["id"] == nid
        assert events[0][1]["title"] == "Hello"

    def test_sender_gets_sent_echo(self, notifier, push, org):
        nid = notifier.notify_user(org.ops_staff.id, title="Ping", sender_id=org.ops_head.id)
        echo = push.events_for(org.ops_head.id, "notification_sent")
        assert echo == [("notification_sent", {"notificationId": nid, "recipientId": org.ops_staff.id, "title": "Ping"})]
        # Echo is push-only
        assert Notification.query.filter_by(recipient_id=org.ops_head.id).count() == 0

    def test_title_required(self, notifier, org):
        with pytest.raises(ValidationError):
            notifier.notify_user(org.ops_staff.id, title="   ")

    def test_invalid_type(self, notifier, org):
        with pytest.raises(ValidationError):
            notifier.notify_user(org.ops_staff.id, title="x", type="urgent")

    def test_unknown_recipient(self, notifier, push, org):
        with pytest.raises(NotFoundError):
            notifier.notify_user(999999, title="Nobody")
        assert Notification.query.count() == 0
        assert push.events_for(999999, "notification") == []

    def test_inactive_recipient(self, notifier, org, make_actor):
        gone = make_actor(ROLE_STAFF, "Operations", is_active=False)
        with pytest.raises(NotFoundError):
            notifier.notify_user(gone.id, title="Too late")
        assert Notification.query.filter_by(recipient_id=gone.id).count() == 0

    def test_push_failure_is_absorbed(self, notifier, push, reporter, org, monkeypatch):
        def _boom(user_id, event_name, payload):
            raise DeliveryError(user_id, event_name)

        monkeypatch.setattr(push, "publish_to_user", _boom)
        nid = notifier.notify_user(org.ops_staff.id, title="Still stored")

        assert _get(nid) is not None
        assert reporter.count("delivery") == 1
        assert reporter.recent("delivery")[0].context["notification_id"] == nid

    def test_unexpected_transport_error_is_absorbed(self, notifier, push, reporter, org, monkeypatch):
        def _boom(user_id, event_name, payload):
            raise RuntimeError("socket closed")

        monkeypatch.setattr(push, "publish_to_user", _boom)
        notifier.notify_user(org.ops_staff.id, title="Still stored")
        assert reporter.recent("delivery")[0].error_type == "DeliveryError"


# ═════════════════════════════════════════════════════════════════════════
# MULTICAST
# ═════════════════════════════════════════════════════════════════════════

class TestMulticast:
    def test_bulk_one_row_per_recipient(self, notifier, org):
        ids = notifier.notify_bulk(
            [org.ops_staff.id, org.fin_staff.id, org.ops_staff.id], title="Memo",
        )
        assert len(ids) == 2
        assert [_get(i).recipient_id for i in ids] == [org.ops_staff.id, org.fin_staff.id]

    def test_bulk_partial_failure(self, notifier, reporter, org, monkeypatch):
        real_persist = notifier._persist
        failing = org.fin_staff.id

        def _flaky(recipient_id, **fields):
            if recipient_id == failing:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_persist(recipient_id, **fields)

        monkeypatch.setattr(notifier, "_persist", _flaky)
        recipients = [org.ops_staff.id, failing, org.logi_staff.id]
        ids = notifier.notify_bulk(recipients, title="Partial")

        assert len(ids) == 2
        stored = Notification.query.filter_by(title="Partial").all()
        assert sorted(n.recipient_id for n in stored) == sorted([org.ops_staff.id, org.logi_staff.id])
        assert reporter.count("fanout") == 1
        assert reporter.recent("fanout")[0].context["recipient_id"] == failing

    def test_bulk_skips_unknown_recipients(self, notifier, reporter, org, make_actor):
        gone = make_actor(ROLE_STAFF, "Operations", is_active=False)
        ids = notifier.notify_bulk([org.ops_staff.id, 999999, gone.id], title="Roll call")

        assert [_get(i).recipient_id for i in ids] == [org.ops_staff.id]
        skipped = sorted(f.context["recipient_id"] for f in reporter.recent("fanout"))
        assert skipped == sorted([999999, gone.id])

    def test_role_targets_active_members_at_call_time(self, notifier, org, make_actor):
        make_actor(ROLE_DEPARTMENT_HEAD, "Legal", is_active=False)
        ids = notifier.notify_role(ROLE_DEPARTMENT_HEAD, title="Heads meeting")

        recipients = sorted(_get(i).recipient_id for i in ids)
        assert recipients == sorted([org.ops_head.id, org.mkt_head.id, org.fin_head.id])

        late = make_actor(ROLE_DEPARTMENT_HEAD, "Legal")
        assert Notification.query.filter_by(recipient_id=late.id).count() == 0

    def test_role_unknown(self, notifier, org):
        with pytest.raises(ValidationError):
            notifier.notify_role("Intern", title="x")

    def test_all_requires_admin(self, notifier, org, ctx):
        with pytest.raises(AuthorizationError):
            notifier.notify_all(ctx(org.ops_head), title="Everyone")

        ids = notifier.notify_all(ctx(org.admin), title="Everyone", sender_id=org.admin.id)
        assert len(ids) == 9

    @pytest.mark.parametrize("sender_role,target,allowed", [
        (ROLE_ADMIN, ROLE_STAFF, True),
        (ROLE_STAFF, ROLE_ADMIN, True),
        (ROLE_DEPARTMENT_HEAD, ROLE_STAFF, True),
        (ROLE_STAFF, "Contractor", False),
    ])
    def test_role_send_policy(self, notifier, make_actor, ctx, sender_role, target, allowed):
        sender = ctx(make_actor(sender_role))
        if allowed:
            notifier.authorize_role_send(sender, target)
        else:
            with pytest.raises(AuthorizationError):
                notifier.authorize_role_send(sender, target)


# ═════════════════════════════════════════════════════════════════════════
# REPLIES
# ═════════════════════════════════════════════════════════════════════════

class TestReply:
    def test_reply_goes_to_parent_sender(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        reply_id = notifier.reply(parent, org.ops_staff.id, "Noted")

        reply = _get(reply_id)
        assert reply.recipient_id == org.ops_head.id
        assert reply.sender_id == org.ops_staff.id
        assert reply.parent_id == parent
        assert reply.title == "Re: Budget"

    def test_sender_replying_to_own_message_is_rejected(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        with pytest.raises(ValidationError):
            notifier.reply(parent, org.ops_head.id, "Follow-up")

    def test_system_notification_reply_targets_recipient(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="System")
        # The only resolvable recipient is the replier themselves
        with pytest.raises(ValidationError):
            notifier.reply(parent, org.ops_staff.id, "Thanks")
        assert Notification.query.filter_by(parent_id=parent).count() == 0

    def test_outsider_cannot_reply(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        with pytest.raises(AuthorizationError):
            notifier.reply(parent, org.fin_staff.id, "Me too")

    def test_reply_to_missing_parent(self, notifier, org):
        with pytest.raises(NotFoundError):
            notifier.reply(404, org.ops_staff.id, "Hello?")

    def test_no_reply_is_self_addressed(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        notifier.reply(parent, org.ops_staff.id, "One")
        for reply in Notification.query.filter(Notification.parent_id.isnot(None)).all():
            assert reply.recipient_id != reply.sender_id


# ═════════════════════════════════════════════════════════════════════════
# ACKNOWLEDGE
# ═════════════════════════════════════════════════════════════════════════

class TestAcknowledge:
    def test_idempotent(self, notifier, push, org):
        nid = notifier.notify_user(org.ops_staff.id, title="Policy", sender_id=org.admin.id)

        first = notifier.acknowledge(nid, org.ops_staff.id)
        stamp = first.acknowledged_at
        assert first.is_acknowledged is True
        assert stamp is not None

        second = notifier.acknowledge(nid, org.ops_staff.id)
        assert second.acknowledged_at == stamp
        assert len(push.events_for(org.admin.id, "notification_acknowledged")) == 1

    def test_only_recipient(self, notifier, org):
        nid = notifier.notify_user(org.ops_staff.id, title="Policy", sender_id=org.admin.id)
        with pytest.raises(AuthorizationError):
            notifier.acknowledge(nid, org.admin.id)
        assert _get(nid).is_acknowledged is False

    def test_system_notification_has_no_ack_event(self, notifier, push, org):
        nid = notifier.notify_user(org.ops_staff.id, title="System")
        notifier.acknowledge(nid, org.ops_staff.id)
        all_events = [e for uid in (org.admin.id, org.ops_head.id) for e in push.events_for(uid)]
        assert all_events == []


# ═════════════════════════════════════════════════════════════════════════
# THREADS & INBOX
# ═════════════════════════════════════════════════════════════════════════

class TestThread:
    def test_parent_and_replies_in_order(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        r1 = notifier.reply(parent, org.ops_staff.id, "First")
        r2 = notifier.reply(parent, org.ops_staff.id, "Second")

        for viewer in (org.ops_staff.id, org.ops_head.id):
            thread = notifier.thread(parent, viewer)
            assert thread["parent"].id == parent
            assert [r.id for r in thread["replies"]] == [r1, r2]

    def test_outsider_cannot_view(self, notifier, org):
        parent = notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id)
        with pytest.raises(AuthorizationError):
            notifier.thread(parent, org.fin_staff.id)


class TestInbox:
    def test_list_with_reply_count(self, notifier, org):
        older = notifier.notify_user(org.ops_head.id, title="Older")
        parent = notifier.notify_user(org.ops_head.id, title="Budget", sender_id=org.ops_staff.id)
        notifier.reply(parent, org.ops_head.id, "Answer")

        items, total = notifier.list_for_user(org.ops_head.id)
        assert total == 2
        assert [i["id"] for i in items] == [parent, older]
        assert items[0]["reply_count"] == 1
        assert items[1]["reply_count"] == 0

    def test_unread_and_mark_read(self, notifier, org):
        a = notifier.notify_user(org.ops_staff.id, title="A")
        notifier.notify_user(org.ops_staff.id, title="B")
        assert notifier.unread_count(org.ops_staff.id) == 2

        notifier.mark_read(a, org.ops_staff.id)
        assert notifier.unread_count(org.ops_staff.id) == 1
        items, total = notifier.list_for_user(org.ops_staff.id, unread_only=True)
        assert total == 1
        assert items[0]["title"] == "B"

    def test_mark_read_recipient_only(self, notifier, org):
        a = notifier.notify_user(org.ops_staff.id, title="A")
        with pytest.raises(AuthorizationError):
            notifier.mark_read(a, org.fin_staff.id)

    def test_mark_all_read(self, notifier, org):
        notifier.notify_bulk([org.ops_staff.id, org.fin_staff.id], title="Memo")
        notifier.notify_user(org.ops_staff.id, title="Other")

        assert notifier.mark_all_read(org.ops_staff.id) == 2
        assert notifier.unread_count(org.ops_staff.id) == 0
        assert notifier.unread_count(org.fin_staff.id) == 1

    def test_pagination(self, notifier, org):
        for i in range(5):
            notifier.notify_user(org.ops_staff.id, title=f"N{i}")
        items, total = notifier.list_for_user(org.ops_staff.id, limit=2, offset=1)
        assert total == 5
        assert [i["title"] for i in items] == ["N3", "N2"]
