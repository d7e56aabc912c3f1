import datetime
import uuid

from fastapi.testclient import TestClient

from gatepass.core.db import SessionLocal
from gatepass.main import create_app
from gatepass.models.app_user import AppUser
from gatepass.models.gate_pass import GatePass
from gatepass.services.pass_artifacts import process_artifact_batch


def _client() -> TestClient:
    return TestClient(create_app())


def _seed_people() -> dict:
    suffix = uuid.uuid4().hex[:8]
    dept = f"DEPT-{suffix}"
    people = {
        "student": AppUser(id=f"stu-{suffix}", name="Asha", role="student", department=dept, mentor_id=f"men-{suffix}"),
        "mentor": AppUser(id=f"men-{suffix}", name="Dr. Rao", role="mentor", department=dept),
        "hod": AppUser(id=f"hod-{suffix}", name="Prof. Iyer", role="hod", department=dept),
        "guard": AppUser(id=f"grd-{suffix}", name="Gate A", role="security"),
        "other": AppUser(id=f"oth-{suffix}", name="Vikram", role="student", department=dept, mentor_id=f"men-{suffix}"),
    }
    with SessionLocal() as db:
        for user in people.values():
            db.add(user)
        db.commit()
        return {key: {"id": user.id, "role": user.role, "department": user.department} for key, user in people.items()}


def _headers(person: dict) -> dict:
    headers = {"X-User-Id": person["id"], "X-User-Role": person["role"]}
    if person.get("department"):
        headers["X-User-Department"] = person["department"]
    return headers


def _create_body(**overrides) -> dict:
    now = datetime.datetime.now(datetime.timezone.utc)
    body = {
        "reason": "Doctor appointment at the city hospital",
        "destination": "City Hospital",
        "departure_time": (now + datetime.timedelta(hours=2)).isoformat(),
        "return_time": (now + datetime.timedelta(hours=4)).isoformat(),
        "category": "medical",
        "emergency_contact": {"name": "Mother", "phone": "9876543210", "relation": "Parent"},
    }
    body.update(overrides)
    return body


def _approve_all(client: TestClient, people: dict, pass_id: str) -> dict:
    resp = client.post(f"/api/v1/passes/{pass_id}/mentor-approve", json={"action": "approve"}, headers=_headers(people["mentor"]))
    assert resp.status_code == 200, resp.text
    resp = client.post(f"/api/v1/passes/{pass_id}/hod-approve", json={"action": "approve"}, headers=_headers(people["hod"]))
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_full_flow_over_http() -> None:
    with _client() as client:
        people = _seed_people()
        resp = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"]))
        assert resp.status_code == 201, resp.text
        created = resp.json()
        assert created["status"] == "pending"
        assert created["mentor_approval"]["status"] == "pending"
        assert created["hod_approval"]["status"] == "pending"
        pass_id = created["id"]

        resp = client.get("/api/v1/passes/for-approval", headers=_headers(people["mentor"]))
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()] == [pass_id]

        approved = _approve_all(client, people, pass_id)
        assert approved["status"] == "approved"
        assert approved["expires_at"] is not None
        # Approvers do not see the gate code.
        assert approved["security_code"] is None

        resp = client.get(f"/api/v1/passes/{pass_id}", headers=_headers(people["student"]))
        assert resp.status_code == 200
        code = resp.json()["security_code"]
        assert code and len(code) == 8

        resp = client.get("/api/v1/passes/active", headers=_headers(people["guard"]))
        assert resp.status_code == 200
        assert pass_id in [p["id"] for p in resp.json()]

        resp = client.post(
            f"/api/v1/passes/{pass_id}/verify",
            json={"security_code": code, "action": "exit"},
            headers=_headers(people["guard"]),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "used"
        assert resp.json()["used_by"] == people["guard"]["id"]

        resp = client.post(f"/api/v1/passes/{pass_id}/verify", json={"action": "exit"}, headers=_headers(people["guard"]))
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "conflict_error"
        assert body["terminal"] is True

        resp = client.get(f"/api/v1/passes/{pass_id}", headers=_headers(people["student"]))
        actions = [h["action"] for h in resp.json()["history"]]
        assert actions == ["created", "mentor_approved", "hod_approved", "used"]

        resp = client.get("/api/v1/notifications", headers=_headers(people["student"]))
        assert resp.status_code == 200
        kinds = [n["kind"] for n in resp.json()]
        assert {"approved", "fully_approved", "used"} <= set(kinds)
        assert resp.headers["X-Total-Count"] == str(len(kinds))


def test_hod_before_mentor_returns_403() -> None:
    with _client() as client:
        people = _seed_people()
        pass_id = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"])).json()["id"]
        resp = client.post(f"/api/v1/passes/{pass_id}/hod-approve", json={"action": "approve"}, headers=_headers(people["hod"]))
        assert resp.status_code == 403
        assert resp.json()["error"] == "policy_error"
        assert "mentor approval required" in resp.json()["message"]


def test_input_validation() -> None:
    with _client() as client:
        people = _seed_people()
        past = (datetime.datetime.now(datetime.timezone.utc) - datetime.timedelta(hours=1)).isoformat()
        resp = client.post("/api/v1/passes", json=_create_body(departure_time=past), headers=_headers(people["student"]))
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"

        resp = client.post("/api/v1/passes", json=_create_body(reason="short"), headers=_headers(people["student"]))
        assert resp.status_code == 422

        resp = client.post(
            "/api/v1/passes",
            json=_create_body(emergency_contact={"name": "Mom", "phone": "12345", "relation": "Parent"}),
            headers=_headers(people["student"]),
        )
        assert resp.status_code == 422

        resp = client.post("/api/v1/passes", json=_create_body(category="vacation"), headers=_headers(people["student"]))
        assert resp.status_code == 422


def test_role_checks_and_visibility() -> None:
    with _client() as client:
        people = _seed_people()
        resp = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["mentor"]))
        assert resp.status_code == 403

        resp = client.post("/api/v1/passes", json=_create_body())
        assert resp.status_code == 401

        pass_id = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"])).json()["id"]
        resp = client.get(f"/api/v1/passes/{pass_id}", headers=_headers(people["other"]))
        assert resp.status_code == 403

        resp = client.get("/api/v1/passes", headers=_headers(people["other"]))
        assert resp.status_code == 200
        assert resp.json() == []

        resp = client.get("/api/v1/passes", headers=_headers(people["student"]))
        assert [p["id"] for p in resp.json()] == [pass_id]

        resp = client.get("/api/v1/passes/does-not-exist", headers=_headers(people["student"]))
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"


def test_qr_and_scan() -> None:
    with _client() as client:
        people = _seed_people()
        pass_id = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"])).json()["id"]

        resp = client.get(f"/api/v1/passes/{pass_id}/qr", headers=_headers(people["student"]))
        assert resp.status_code == 404

        _approve_all(client, people, pass_id)
        with SessionLocal() as db:
            process_artifact_batch(db)

        resp = client.get(f"/api/v1/passes/{pass_id}/qr", headers=_headers(people["student"]))
        assert resp.status_code == 200, resp.text
        qr = resp.json()
        assert qr["image_status"] == "DONE"
        assert qr["image"].startswith("data:image/png;base64,")

        resp = client.post("/api/v1/passes/scan", json={"token": qr["token"][:-3] + "abc"}, headers=_headers(people["guard"]))
        assert resp.status_code == 400
        assert resp.json()["details"]["reason"] in {"invalid_signature", "malformed"}

        resp = client.post("/api/v1/passes/scan", json={"token": qr["token"]}, headers=_headers(people["guard"]))
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "used"


def test_notifications_mark_read() -> None:
    with _client() as client:
        people = _seed_people()
        client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"]))
        resp = client.get("/api/v1/notifications?unread=true", headers=_headers(people["mentor"]))
        items = resp.json()
        assert len(items) == 1
        assert items[0]["kind"] == "submitted"

        resp = client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=_headers(people["student"]))
        assert resp.status_code == 404

        resp = client.post(f"/api/v1/notifications/{items[0]['id']}/read", headers=_headers(people["mentor"]))
        assert resp.status_code == 200
        assert resp.json()["read_at"] is not None

        resp = client.get("/api/v1/notifications?unread=true", headers=_headers(people["mentor"]))
        assert resp.json() == []


def test_health() -> None:
    with _client() as client:
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["database"] is True
        assert body["expiry_scheduler"] is False


def test_unread_count_and_mark_all_read() -> None:
    with _client() as client:
        people = _seed_people()
        client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"]))
        client.post("/api/v1/passes", json=_create_body(destination="Bank"), headers=_headers(people["student"]))

        resp = client.get("/api/v1/notifications/unread-count", headers=_headers(people["mentor"]))
        assert resp.status_code == 200
        assert resp.json() == {"count": 2}

        resp = client.get("/api/v1/notifications/unread-count", headers=_headers(people["hod"]))
        assert resp.json() == {"count": 0}

        resp = client.patch("/api/v1/notifications/mark-all-read", headers=_headers(people["hod"]))
        assert resp.json()["count"] == 0

        resp = client.patch("/api/v1/notifications/mark-all-read", headers=_headers(people["mentor"]))
        assert resp.status_code == 200
        assert resp.json()["count"] == 2

        resp = client.get("/api/v1/notifications/unread-count", headers=_headers(people["mentor"]))
        assert resp.json() == {"count": 0}
        resp = client.get("/api/v1/notifications", headers=_headers(people["mentor"]))
        assert all(n["read_at"] is not None for n in resp.json())


def test_security_list_matches_detail_visibility() -> None:
    with _client() as client:
        people = _seed_people()
        pending_id = client.post("/api/v1/passes", json=_create_body(), headers=_headers(people["student"])).json()["id"]
        expired_id = client.post("/api/v1/passes", json=_create_body(destination="Bank"), headers=_headers(people["student"])).json()["id"]
        with SessionLocal() as db:
            gate_pass = db.get(GatePass, expired_id)
            gate_pass.status = "expired"
            db.commit()

        resp = client.get(f"/api/v1/passes/{expired_id}", headers=_headers(people["guard"]))
        assert resp.status_code == 200
        resp = client.get(f"/api/v1/passes/{pending_id}", headers=_headers(people["guard"]))
        assert resp.status_code == 403

        resp = client.get("/api/v1/passes?status=expired&page_size=100", headers=_headers(people["guard"]))
        assert expired_id in [p["id"] for p in resp.json()]
        resp = client.get("/api/v1/passes?status=pending&page_size=100", headers=_headers(people["guard"]))
        assert resp.json() == []
