"""
Document workflow API tests.

Routes under /api/v1/documents, driven through the test client with header
identity. Covers status codes and the JSON error contract.
"""
import pytest

from opsflow.models.stage_chain import (
    ADMIN_APPROVED,
    DEPT_HEAD_APPROVED,
    PENDING_ADMIN,
    PENDING_DEPT_HEAD,
    PENDING_MARKETING,
)


@pytest.fixture()
def submit(client, auth_headers, payloads):
    def _submit(actor, doc_type="requisition", body=None):
        data = body if body is not None else getattr(payloads, doc_type)
        return client.post(f"/api/v1/documents/{doc_type}", json=data, headers=auth_headers(actor))
    return _submit


@pytest.fixture()
def advance(client, auth_headers):
    def _advance(actor, doc_id, decision, **extra):
        body = {"decision": decision, **extra}
        return client.post(f"/api/v1/documents/{doc_id}/advance", json=body, headers=auth_headers(actor))
    return _advance


class TestSubmit:
    def test_requires_identity(self, client, payloads, org):
        res = client.post("/api/v1/documents/requisition", json=payloads.requisition)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_unknown_actor_is_anonymous(self, client, payloads, org):
        res = client.post(
            "/api/v1/documents/requisition", json=payloads.requisition, headers={"X-User-Id": "9999"},
        )
        assert res.status_code == 401

    def test_created(self, submit, org):
        res = submit(org.ops_staff)
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == PENDING_DEPT_HEAD
        assert body["owner_id"] == org.ops_staff.id
        assert body["department_name"] == "Operations"
        assert body["stage_records"] == []

    def test_proposal_starts_at_marketing(self, submit, org):
        res = submit(org.ops_staff, "proposal")
        assert res.get_json()["status"] == PENDING_MARKETING

    def test_body_must_be_object(self, client, auth_headers, org):
        res = client.post(
            "/api/v1/documents/requisition", data="not json",
            content_type="application/json", headers=auth_headers(org.ops_staff),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_missing_fields(self, submit, org):
        res = submit(org.ops_staff, body={"request_type": "Stationery"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_DOMAIN"
        assert body["details"] == {"requisition_date": "required"}

    def test_unknown_type(self, submit, org):
        res = submit(org.ops_staff, "leave_request", body={"reason": "rest"})
        assert res.status_code == 422

    def test_role_not_allowed(self, submit, org):
        res = submit(org.ops_head, "staff_client_report")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


class TestAdvance:
    def test_full_chain(self, submit, advance, client, auth_headers, org):
        doc_id = submit(org.ops_staff).get_json()["id"]

        res = advance(org.ops_head, doc_id, DEPT_HEAD_APPROVED, notes="fine")
        assert res.status_code == 200
        assert res.get_json()["status"] == PENDING_ADMIN

        res = advance(org.admin, doc_id, ADMIN_APPROVED)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == ADMIN_APPROVED
        assert [r["decision"] for r in body["stage_records"]] == [DEPT_HEAD_APPROVED, ADMIN_APPROVED]
        assert body["stage_records"][0]["notes"] == "fine"

    def test_decision_required(self, submit, advance, org):
        doc_id = submit(org.ops_staff).get_json()["id"]
        res = advance(org.ops_head, doc_id, "  ")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_wrong_reviewer(self, submit, advance, org):
        doc_id = submit(org.ops_staff).get_json()["id"]
        res = advance(org.fin_head, doc_id, DEPT_HEAD_APPROVED)
        assert res.status_code == 403

    def test_decision_of_other_stage(self, submit, advance, org):
        doc_id = submit(org.ops_staff).get_json()["id"]
        res = advance(org.ops_head, doc_id, ADMIN_APPROVED)
        assert res.status_code == 422

    def test_terminal_is_conflict(self, submit, advance, org):
        doc_id = submit(org.ops_staff).get_json()["id"]
        advance(org.ops_head, doc_id, DEPT_HEAD_APPROVED)
        advance(org.admin, doc_id, ADMIN_APPROVED)

        res = advance(org.admin2, doc_id, ADMIN_APPROVED)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["current_status"] == ADMIN_APPROVED

    def test_stale_expected_status_is_conflict(self, submit, advance, org):
        doc_id = submit(org.ops_staff).get_json()["id"]
        advance(org.ops_head, doc_id, DEPT_HEAD_APPROVED)

        # A second head approval composed against the old status
        res = advance(org.admin, doc_id, DEPT_HEAD_APPROVED, expectedStatus=PENDING_DEPT_HEAD)
        assert res.status_code == 409
        details = res.get_json()["details"]
        assert details == {"current_status": PENDING_ADMIN, "expected_status": PENDING_DEPT_HEAD}

    def test_missing_document(self, advance, org):
        res = advance(org.admin, 404, ADMIN_APPROVED)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestQueries:
    def test_get_visibility(self, submit, client, auth_headers, org):
        doc_id = submit(org.ops_staff).get_json()["id"]

        for viewer in (org.ops_staff, org.ops_head, org.admin):
            res = client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(viewer))
            assert res.status_code == 200, viewer.email

        res = client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(org.fin_staff))
        assert res.status_code == 403

    def test_pending_queue(self, submit, client, auth_headers, org):
        ops_doc = submit(org.ops_staff).get_json()["id"]
        submit(org.logi_staff)

        res = client.get("/api/v1/documents/pending", headers=auth_headers(org.ops_head))
        assert res.status_code == 200
        body = res.get_json()
        assert [d["id"] for d in body["items"]] == [ops_doc]
        assert "stage_records" not in body["items"][0]

        res = client.get("/api/v1/documents/pending", headers=auth_headers(org.ops_staff))
        assert res.get_json() == {"items": [], "total": 0}

    def test_list_filters(self, submit, client, auth_headers, org):
        submit(org.ops_staff)
        submit(org.ops_staff, "proposal")
        submit(org.fin_staff)

        res = client.get("/api/v1/documents", headers=auth_headers(org.ops_staff))
        assert res.get_json()["total"] == 2

        res = client.get("/api/v1/documents?type=proposal", headers=auth_headers(org.admin))
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["type"] == "proposal"

        res = client.get(f"/api/v1/documents?status={PENDING_DEPT_HEAD}&limit=1", headers=auth_headers(org.admin))
        body = res.get_json()
        assert body["total"] == 2
        assert len(body["items"]) == 1

    def test_list_unknown_type(self, client, auth_headers, org):
        res = client.get("/api/v1/documents?type=leave", headers=auth_headers(org.admin))
        assert res.status_code == 422
