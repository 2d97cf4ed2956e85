import uuid
from datetime import timedelta

from foodsafe.core.workflow.errors import TransportError
from foodsafe.db.base import utcnow


def _create_nc(client, headers, **fields):
    resp = client.post("/non-conformances", json={"title": "Label misprint on SKU 2231", **fields}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_module_health_ok(client):
    body = client.get("/health/modules").json()
    assert body["status"] == "ok"
    assert {m["name"] for m in body["modules"]} >= {"capa", "non_conformance", "documents", "activities"}


def test_module_health_degraded(client, store):
    store.fail_next("query", "documents", TransportError("db down"))
    body = client.get("/health/modules").json()
    assert body["status"] == "degraded"
    failed = [m for m in body["modules"] if not m["healthy"]]
    assert [m["name"] for m in failed] == ["documents"]
    assert "db down" in failed[0]["detail"]


def test_requires_token(client):
    assert client.get("/capas").status_code == 401
    assert client.get("/capas", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_system_actor_token_refused(client, token_for):
    resp = client.get("/capas", headers={"Authorization": f"Bearer {token_for('System')}"})
    assert resp.status_code == 403


def test_create_and_transition_nc(client, auth_headers, actor):
    nc = _create_nc(client, auth_headers)
    assert nc["status"] == "On Hold"
    assert nc["created_by"] == actor
    assert nc["assigned_to"] == actor

    resp = client.post(f"/non-conformances/{nc['id']}/transition", json={"to_status": "Under Review"}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["reviewer"] == actor


def test_illegal_transition_is_422_with_reason(client, auth_headers):
    nc = _create_nc(client, auth_headers)
    resp = client.post(f"/non-conformances/{nc['id']}/transition", json={"to_status": "Closed"}, headers=auth_headers)
    assert resp.status_code == 422
    assert "On Hold" in resp.json()["detail"]


def test_unknown_record_is_404(client, auth_headers):
    assert client.get(f"/capas/{uuid.uuid4()}", headers=auth_headers).status_code == 404


def test_store_outage_is_503(client, store, auth_headers):
    store.fail_next("get", "capas", TransportError("connection refused"))
    resp = client.get(f"/capas/{uuid.uuid4()}", headers=auth_headers)
    assert resp.status_code == 503
    assert resp.json()["detail"] == "Service temporarily unavailable, please retry"


def test_generate_capa_endpoint_is_idempotent(client, auth_headers):
    nc = _create_nc(client, auth_headers)
    first = client.post(f"/non-conformances/{nc['id']}/generate-capa", headers=auth_headers)
    second = client.post(f"/non-conformances/{nc['id']}/generate-capa", headers=auth_headers)
    assert first.status_code == second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["source"] == "non_conformance"
    assert client.get(f"/non-conformances/{nc['id']}", headers=auth_headers).json()["capa_id"] == first.json()["id"]


def test_link_capa_conflict_is_409(client, auth_headers):
    nc = _create_nc(client, auth_headers)
    capas = [
        client.post("/capas", json={"title": f"CAPA {i}"}, headers=auth_headers).json()["id"]
        for i in range(2)
    ]
    assert client.post(f"/non-conformances/{nc['id']}/link-capa", json={"capa_id": capas[0]}, headers=auth_headers).status_code == 200
    resp = client.post(f"/non-conformances/{nc['id']}/link-capa", json={"capa_id": capas[1]}, headers=auth_headers)
    assert resp.status_code == 409


def test_activities_need_explicit_order(client, auth_headers):
    nc = _create_nc(client, auth_headers)
    client.post(f"/non-conformances/{nc['id']}/transition", json={"to_status": "Under Review", "comment": "Lab sample taken"}, headers=auth_headers)

    assert client.get(f"/non-conformances/{nc['id']}/activities", headers=auth_headers).status_code == 422
    entries = client.get(f"/non-conformances/{nc['id']}/activities?order=asc", headers=auth_headers).json()
    assert [e["action_type"] for e in entries] == ["created", "status_change"]
    assert entries[1]["metadata"] == {"comment": "Lab sample taken"}
    newest = client.get(f"/non-conformances/{nc['id']}/activities?order=desc", headers=auth_headers).json()
    assert newest[0]["action_type"] == "status_change"


def test_effectiveness_before_closure_is_422(client, auth_headers):
    capa = client.post("/capas", json={"title": "Replace gasket"}, headers=auth_headers).json()
    resp = client.post(f"/capas/{capa['id']}/effectiveness", json={"rating": "Effective"}, headers=auth_headers)
    assert resp.status_code == 422


def test_capa_update_ignores_status(client, auth_headers):
    capa = client.post("/capas", json={"title": "Replace gasket"}, headers=auth_headers).json()
    resp = client.patch(f"/capas/{capa['id']}", json={"status": "Closed", "department": "Maintenance"}, headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "Open"
    assert resp.json()["department"] == "Maintenance"


def test_complaint_flow(client, auth_headers):
    resp = client.post("/complaints", json={"title": "Plastic fragment", "category": "foreign_material"}, headers=auth_headers)
    assert resp.status_code == 201
    complaint = resp.json()
    assert complaint["category"] == "Foreign_Material"
    assert complaint["status"] == "New"

    resp = client.post(f"/complaints/{complaint['id']}/transition", json={"to_status": "Escalated"}, headers=auth_headers)
    assert resp.json()["status"] == "Escalated"
    capa = client.post(f"/complaints/{complaint['id']}/generate-capa", headers=auth_headers).json()
    assert capa["priority"] == "High"
    assert capa["source"] == "complaint"


def test_document_checkout_conflict(client, auth_headers, token_for):
    doc = client.post("/documents", json={"title": "Cleaning SOP", "category": "SOP"}, headers=auth_headers).json()
    assert client.post(f"/documents/{doc['id']}/checkout", headers=auth_headers).json()["checkout_status"] == "Checked_Out"

    other = {"Authorization": f"Bearer {token_for('editor-2')}"}
    assert client.post(f"/documents/{doc['id']}/checkout", headers=other).status_code == 409
    resp = client.post(f"/documents/{doc['id']}/transition", json={"to_status": "Pending_Approval"}, headers=auth_headers)
    assert resp.status_code == 409

    back = client.post(f"/documents/{doc['id']}/checkin", json={"content": "rev 2"}, headers=auth_headers).json()
    assert back["version"] == 2
    versions = client.get(f"/documents/{doc['id']}/versions", headers=auth_headers).json()
    assert [v["version_no"] for v in versions] == [2]


def test_run_sweep_endpoint_and_inbox(client, store, auth_headers, token_for):
    capa = store.put("capas", {
        "title": "Pest trap audit", "status": "Open", "due_date": utcnow() - timedelta(days=2),
        "created_by": "qa-lead-7", "assigned_to": "pest-contractor",
    })
    resp = client.post("/automation/sweeps/overdue_capas", headers=auth_headers)
    assert resp.status_code == 200
    report = resp.json()
    assert report["changed"] == 1
    assert report["failures"] == []

    assert client.get(f"/capas/{capa['id']}", headers=auth_headers).json()["status"] == "Overdue"
    assert client.post("/automation/sweeps/archive_everything", headers=auth_headers).status_code == 422
    assert "overdue_capas" in client.get("/automation/sweeps", headers=auth_headers).json()["sweeps"]


def test_notifications_are_per_user(client, store, token_for):
    store.put("notifications", {"user_id": "pest-contractor", "message": "CAPA overdue", "kind": "escalation"})
    contractor = {"Authorization": f"Bearer {token_for('pest-contractor')}"}
    inbox = client.get("/notifications", headers=contractor).json()
    assert [n["message"] for n in inbox] == ["CAPA overdue"]

    stranger = {"Authorization": f"Bearer {token_for('someone-else')}"}
    assert client.get("/notifications", headers=stranger).json() == []
    assert client.post(f"/notifications/{inbox[0]['id']}/read", headers=stranger).status_code == 404
    read = client.post(f"/notifications/{inbox[0]['id']}/read", headers=contractor).json()
    assert read["is_read"] is True


def test_capa_created_for_nc_links_back(client, auth_headers):
    nc = _create_nc(client, auth_headers)
    resp = client.post("/capas", json={"title": "Fix label check", "source": "non_conformance", "source_id": nc["id"]}, headers=auth_headers)
    assert resp.status_code == 201
    capa = resp.json()
    assert client.get(f"/non-conformances/{nc['id']}", headers=auth_headers).json()["capa_id"] == capa["id"]

    again = client.post("/capas", json={"title": "Second fix", "source": "non_conformance", "source_id": nc["id"]}, headers=auth_headers)
    assert again.status_code == 409
