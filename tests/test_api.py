"""
HTTP-level tests — authentication middleware, response envelope and a few
end-to-end flows through the blueprints.

Categories:
    1. Health / authentication / tenant gate
    2. Workflow approval flow over HTTP
    3. Notifications endpoints
    4. Documents: upload, signed URL and download
"""

import io

import pytest

from backoffice.models import db
from backoffice.services.storage import LocalFileStorage
from conftest import make_project, make_tenant, make_user


@pytest.fixture()
def acme():
    t = make_tenant()
    users = {
        "member": make_user(t, "member@acme.example.com"),
        "approver": make_user(t, "approver@acme.example.com", roles=("approver",)),
        "it": make_user(t, "it@acme.example.com", roles=("it_admin",)),
        "pm": make_user(t, "pm@acme.example.com", roles=("pm",)),
    }
    db.session.commit()
    return t, users


# ═════════════════════════════════════════════════════════════════════════════
# 1. Health / authentication
# ═════════════════════════════════════════════════════════════════════════════


class TestAuthGate:
    def test_health_needs_no_token(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_missing_token(self, client):
        res = client.get("/api/v1/workflows")
        assert res.status_code == 401
        assert res.get_json() == {
            "success": False,
            "error": {"code": "ERR-AUTH-001", "message": "Authentication required"},
        }

    def test_garbage_token(self, client):
        res = client.get("/api/v1/workflows", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_disabled_user_rejected(self, client, auth_headers, acme):
        t, _ = acme
        gone = make_user(t, "gone@acme.example.com", status="disabled")
        db.session.commit()
        res = client.get("/api/v1/workflows", headers=auth_headers(gone, t))
        assert res.status_code == 401
        assert res.get_json()["error"]["code"] == "ERR-AUTH-001"

    def test_deleted_tenant_only_reaches_restore(self, client, auth_headers, acme):
        t, users = acme
        headers = auth_headers(users["it"], t)

        res = client.delete("/api/v1/admin/tenant", json={"confirmation": "Acme K.K."}, headers=headers)
        assert res.status_code == 200

        blocked = client.get("/api/v1/workflows", headers=headers)
        assert blocked.status_code == 403
        assert blocked.get_json()["error"]["code"] == "ERR-AUTH-003"

        restored = client.post("/api/v1/admin/tenant/restore", headers=headers)
        assert restored.status_code == 200
        assert restored.get_json()["data"]["deleted_at"] is None
        assert client.get("/api/v1/workflows", headers=headers).status_code == 200

    def test_unknown_route_uses_error_envelope(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "ERR-SYS-404"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Workflow flow
# ═════════════════════════════════════════════════════════════════════════════


class TestWorkflowApi:
    def test_create_submit_approve(self, client, auth_headers, acme):
        t, users = acme
        member_h = auth_headers(users["member"], t)
        approver_h = auth_headers(users["approver"], t)

        created = client.post("/api/v1/workflows", json={
            "title": "New laptop", "type": "purchase", "amount": 180000,
            "approver_id": users["approver"].id,
        }, headers=member_h)
        assert created.status_code == 201
        wf = created.get_json()["data"]
        assert wf["status"] == "draft"

        submitted = client.post(f"/api/v1/workflows/{wf['id']}/submit", headers=member_h)
        assert submitted.get_json()["data"]["status"] == "submitted"

        pending = client.get("/api/v1/workflows/pending", headers=approver_h).get_json()["data"]
        assert [w["id"] for w in pending] == [wf["id"]]

        forbidden = client.post(f"/api/v1/workflows/{wf['id']}/approve", headers=member_h)
        assert forbidden.status_code == 403

        approved = client.post(f"/api/v1/workflows/{wf['id']}/approve", headers=approver_h)
        assert approved.status_code == 200
        assert approved.get_json()["data"]["status"] == "approved"

        again = client.post(f"/api/v1/workflows/{wf['id']}/approve", headers=approver_h)
        assert again.status_code == 409
        assert again.get_json()["error"]["code"] == "ERR-WF-001"

    def test_reject_requires_reason(self, client, auth_headers, acme):
        t, users = acme
        wf = client.post("/api/v1/workflows", json={
            "title": "Trip", "status": "submitted", "approver_id": users["approver"].id,
        }, headers=auth_headers(users["member"], t)).get_json()["data"]

        res = client.post(f"/api/v1/workflows/{wf['id']}/reject", json={}, headers=auth_headers(users["approver"], t))
        assert res.status_code == 400
        assert res.get_json()["error"]["code"] == "ERR-WF-002"

    def test_validation_error_envelope(self, client, auth_headers, acme):
        t, users = acme
        res = client.post("/api/v1/workflows", json={"title": ""}, headers=auth_headers(users["member"], t))
        assert res.status_code == 400
        assert res.get_json()["error"]["code"] == "ERR-VAL-001"

    def test_other_tenant_cannot_read(self, client, auth_headers, acme):
        t, users = acme
        wf = client.post("/api/v1/workflows", json={"title": "Secret"},
                         headers=auth_headers(users["member"], t)).get_json()["data"]

        other = make_tenant("Other", "other")
        outsider = make_user(other, "admin@other.example.com", roles=("tenant_admin",))
        db.session.commit()

        res = client.get(f"/api/v1/workflows/{wf['id']}", headers=auth_headers(outsider, other))
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "ERR-WF-003"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Notifications
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationApi:
    def test_inbox_roundtrip(self, client, auth_headers, acme):
        t, users = acme
        client.post("/api/v1/workflows", json={
            "title": "Trip", "status": "submitted", "approver_id": users["approver"].id,
        }, headers=auth_headers(users["member"], t))
        headers = auth_headers(users["approver"], t)

        assert client.get("/api/v1/notifications/unread-count", headers=headers).get_json()["data"] == {"unread_count": 1}
        inbox = client.get("/api/v1/notifications", headers=headers).get_json()["data"]
        assert inbox[0]["type"] == "workflow_submitted"

        read = client.patch(f"/api/v1/notifications/{inbox[0]['id']}/read", headers=headers)
        assert read.get_json()["data"]["is_read"] is True
        assert client.post("/api/v1/notifications/mark-all-read", headers=headers).get_json()["data"] == {"marked_read": 0}

    def test_mark_read_unknown(self, client, auth_headers, acme):
        t, users = acme
        res = client.patch("/api/v1/notifications/999/read", headers=auth_headers(users["member"], t))
        assert res.status_code == 404
        assert res.get_json()["error"]["code"] == "ERR-NTF-001"


# ═════════════════════════════════════════════════════════════════════════════
# 4. Documents
# ═════════════════════════════════════════════════════════════════════════════


class TestDocumentApi:
    @pytest.fixture()
    def disk_storage(self, app, monkeypatch, tmp_path):
        storage = LocalFileStorage(str(tmp_path))
        monkeypatch.setitem(app.extensions, "file_storage", storage)
        return storage

    def test_upload_and_download(self, client, auth_headers, acme, disk_storage):
        t, users = acme
        p = make_project(t, users["pm"], members=(users["member"],))
        db.session.commit()

        uploaded = client.post(
            f"/api/v1/projects/{p.id}/documents",
            data={"file": (io.BytesIO(b"minutes of the kickoff"), "kickoff.txt", "text/plain")},
            content_type="multipart/form-data",
            headers=auth_headers(users["pm"], t),
        )
        assert uploaded.status_code == 201
        doc = uploaded.get_json()["data"]

        link = client.get(f"/api/v1/documents/{doc['id']}/url", headers=auth_headers(users["member"], t))
        url = link.get_json()["data"]["url"]
        assert url.startswith("/api/v1/documents/download?token=")

        res = client.get(url)
        assert res.status_code == 200
        assert res.get_data() == b"minutes of the kickoff"
        assert "kickoff.txt" in res.headers["Content-Disposition"]
        res.close()

    def test_member_upload_forbidden(self, client, auth_headers, acme, disk_storage):
        t, users = acme
        p = make_project(t, users["pm"], members=(users["member"],))
        db.session.commit()
        res = client.post(
            f"/api/v1/projects/{p.id}/documents",
            data={"file": (io.BytesIO(b"x"), "x.txt", "text/plain")},
            content_type="multipart/form-data",
            headers=auth_headers(users["member"], t),
        )
        assert res.status_code == 403
        assert res.get_json()["error"]["code"] == "ERR-AUTH-F02"

    def test_download_rejects_bad_token(self, client, disk_storage):
        res = client.get("/api/v1/documents/download?token=forged")
        assert res.status_code == 403
        assert res.get_json()["error"]["code"] == "ERR-AUTH-F01"
