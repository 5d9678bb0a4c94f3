"""
Identity seam, health and audit endpoints, directory seed.

Tests cover:
  - Bearer access tokens resolve to the directory actor
  - Expired / forged / wrong-type tokens leave the request anonymous
  - Header identity only when TRUST_USER_HEADER is on
  - Inactive actors are anonymous
  - /health needs no identity and reports absorbed failures
  - /audit-logs is Admin only
  - seed-directory is idempotent
"""
from datetime import datetime, timedelta, timezone

import jwt as pyjwt
import pytest

from opsflow.models.auth import ROLE_ADMIN, ROLE_STAFF, Actor, Department
from opsflow.services.jwt_service import decode_access_token, generate_access_token
from opsflow.services.seed import DEMO_ACTORS, DEMO_DEPARTMENTS, seed_directory

UNREAD = "/api/v1/notifications/unread-count"


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestAccessToken:
    def test_roundtrip_claims(self, org):
        payload = decode_access_token(generate_access_token(org.ops_staff.id, ROLE_STAFF))
        assert payload["sub"] == str(org.ops_staff.id)
        assert payload["role"] == ROLE_STAFF
        assert payload["type"] == "access"

    def test_refresh_type_rejected(self, app, org):
        token = pyjwt.encode(
            {"sub": str(org.ops_staff.id), "type": "refresh",
             "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            app.config["JWT_SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(pyjwt.InvalidTokenError):
            decode_access_token(token)


class TestMiddleware:
    def test_bearer_identity(self, client, org):
        res = client.get(UNREAD, headers=_bearer(generate_access_token(org.ops_staff.id)))
        assert res.status_code == 200

    def test_expired_token(self, app, client, org, monkeypatch):
        monkeypatch.setitem(app.config, "JWT_ACCESS_EXPIRES", -10)
        token = generate_access_token(org.ops_staff.id)
        res = client.get(UNREAD, headers=_bearer(token))
        assert res.status_code == 401

    def test_forged_token_does_not_fall_back_to_header(self, client, org):
        token = pyjwt.encode(
            {"sub": str(org.admin.id), "type": "access",
             "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "someone-elses-secret-key-with-enough-length", algorithm="HS256",
        )
        headers = {**_bearer(token), "X-User-Id": str(org.admin.id)}
        assert client.get(UNREAD, headers=headers).status_code == 401

    def test_header_identity_requires_trust(self, app, client, auth_headers, org, monkeypatch):
        assert client.get(UNREAD, headers=auth_headers(org.ops_staff)).status_code == 200
        monkeypatch.setitem(app.config, "TRUST_USER_HEADER", False)
        assert client.get(UNREAD, headers=auth_headers(org.ops_staff)).status_code == 401

    def test_malformed_header_identity(self, client, org):
        assert client.get(UNREAD, headers={"X-User-Id": "ops.staff"}).status_code == 401

    def test_inactive_actor(self, client, make_actor, auth_headers):
        gone = make_actor(ROLE_STAFF, "Operations", is_active=False)
        assert client.get(UNREAD, headers=auth_headers(gone)).status_code == 401
        assert client.get(UNREAD, headers=_bearer(generate_access_token(gone.id))).status_code == 401


class TestHealth:
    def test_no_identity_needed(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "ok"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["push_channel"] == {"status": "ok", "transport": "memory"}

    def test_reports_absorbed_failures(self, client, reporter):
        reporter.report("delivery", message="socket closed")
        body = client.get("/api/v1/health").get_json()
        assert body["checks"]["absorbed_failures"] == {"audit": 0, "delivery": 1, "fanout": 0}


class TestAuditLogs:
    def test_admin_only(self, client, auth_headers, notifier, org):
        notifier.reply(
            notifier.notify_user(org.ops_staff.id, title="Budget", sender_id=org.ops_head.id),
            org.ops_staff.id, "Noted",
        )

        res = client.get("/api/v1/audit-logs", headers=auth_headers(org.ops_staff))
        assert res.status_code == 403
        assert res.get_json()["required_roles"] == [ROLE_ADMIN]

        res = client.get("/api/v1/audit-logs?action=notification.reply", headers=auth_headers(org.admin))
        body = res.get_json()
        assert body["total"] == 1
        log = body["audit_logs"][0]
        assert log["actor_id"] == org.ops_staff.id
        assert log["entity_type"] == "notification"


class TestSeed:
    def test_idempotent(self):
        first = seed_directory()
        assert first == {"departments": len(DEMO_DEPARTMENTS), "actors": len(DEMO_ACTORS)}
        assert seed_directory() == {"departments": 0, "actors": 0}

        ops = Department.query.filter_by(name="Operations").one()
        assert ops.manager_id == Actor.query.filter_by(email="ops.head@opsflow.local").one().id
        assert Department.query.filter_by(name="Marketing").one().head_email == "mkt.head@opsflow.local"

    def test_reset(self):
        seed_directory()
        assert seed_directory(reset=True) == {"departments": len(DEMO_DEPARTMENTS), "actors": len(DEMO_ACTORS)}
        assert Actor.query.count() == len(DEMO_ACTORS)

    def test_cli_command_registered(self, app):
        assert "seed-directory" in app.cli.commands
