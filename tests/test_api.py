import pytest
from bson import ObjectId

import database
import main


@pytest.fixture
def admin(add_user):
    return add_user("root", role="admin")


def proposal(**overrides):
    body = {
        "title": "Community recycling hub",
        "description": "Collection point for dry waste",
        "category": "disposal",
        "location": "Sector 9",
        "budget": 2500,
        "timeline": "2 months",
        "contactName": "Kiran",
        "contactEmail": "kiran@example.com",
        "visibility": "public",
    }
    body.update(overrides)
    return body


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "EcoWaste API running"}
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["uptime"] >= 0


def test_submit_requires_identity(client):
    res = client.post("/api/projects", json=proposal())
    assert res.status_code == 401
    assert res.json()["error"] == "Unauthorized"


def test_submit_and_list_own_projects(client, headers):
    res = client.post("/api/projects", json=proposal(), headers=headers("kiran"))
    assert res.status_code == 201
    project_id = res.json()["projectId"]

    mine = client.get("/api/projects/mine", headers=headers("kiran")).json()["projects"]
    assert [p["id"] for p in mine] == [project_id]
    assert mine[0]["status"] == "pending"
    assert client.get("/api/projects/mine", headers=headers("someone-else")).json()["projects"] == []


def test_negative_budget_is_a_bad_request(client, headers, db):
    res = client.post("/api/projects", json=proposal(budget=-50), headers=headers("kiran"))
    assert res.status_code == 400
    assert res.json()["error"] == "Bad Request"
    assert db["project"].count_documents({}) == 0


def test_admin_moderates_project(client, headers, admin, add_user, add_project, db):
    add_user("bob")
    project_id = add_project()

    res = client.post("/api/admin/projects/status", json={"projectId": project_id, "status": "approved"}, headers=headers("bob"))
    assert res.status_code == 403

    res = client.post(
        "/api/admin/projects/status",
        json={"projectId": project_id, "status": "approved", "adminComment": "Looks good"},
        headers=headers(admin),
    )
    assert res.status_code == 200
    assert res.json()["project"]["status"] == "approved"

    public = client.get("/api/projects/public").json()["projects"]
    assert [p["id"] for p in public] == [project_id]

    res = client.post("/api/admin/projects/status", json={"projectId": project_id, "status": "done"}, headers=headers(admin))
    assert res.status_code == 400

    res = client.post("/api/admin/projects/status", json={"projectId": str(ObjectId()), "status": "approved"}, headers=headers(admin))
    assert res.status_code == 404


def test_comment_flow(client, headers, admin, add_project):
    project_id = add_project(owner="owner-1")
    res = client.post("/api/comments", json={"projectId": project_id, "content": "Happy to volunteer"}, headers=headers("bob"))
    assert res.status_code == 201
    comment_id = res.json()["comment"]["id"]

    assert client.get("/api/comments", params={"projectId": project_id}).json()["comments"] == []
    assert len(client.get("/api/comments", params={"projectId": project_id}, headers=headers("owner-1")).json()["comments"]) == 1

    pending = client.get("/api/admin/comments/pending", headers=headers(admin)).json()["comments"]
    assert [c["id"] for c in pending] == [comment_id]

    res = client.post("/api/admin/comments/moderate", json={"commentId": comment_id, "status": "approved"}, headers=headers(admin))
    assert res.json()["comment"]["status"] == "approved"

    public = client.get("/api/comments", params={"projectId": project_id}).json()["comments"]
    assert [c["content"] for c in public] == ["Happy to volunteer"]


def test_feedback_flow(client, headers, admin):
    body = {
        "title": "Burning garbage",
        "description": "Plastic burnt every evening",
        "address": "5th Cross",
        "lat": 12.91,
        "lng": 77.62,
        "imageUrl": "/feedback-images/9.jpg",
        "severity": "critical",
    }
    res = client.post("/api/feedback", json=body, headers=headers("bob"))
    assert res.status_code == 201
    feedback_id = res.json()["feedback"]["id"]

    res = client.post("/api/admin/feedback/status", json={"feedbackId": feedback_id, "status": "under_review"}, headers=headers(admin))
    assert res.json()["feedback"]["status"] == "under_review"

    listing = client.get("/api/feedback", params={"status": "under_review", "limit": 5}, headers=headers("bob")).json()
    assert [f["id"] for f in listing["data"]] == [feedback_id]
    assert listing["pagination"] == {"total": 1, "page": 1, "limit": 5, "pages": 1}


def test_feedback_pagination(client, headers, add_feedback):
    for _ in range(7):
        add_feedback()
    page = client.get("/api/feedback", params={"page": 2, "limit": 5}, headers=headers("bob")).json()
    assert len(page["data"]) == 2
    assert page["pagination"]["pages"] == 2


def test_role_management(client, headers, admin, add_user):
    add_user("alice")
    assert client.get("/api/admin/check", headers=headers("alice")).json() == {"isAdmin": False}

    res = client.post("/api/admin/users/role", json={"userId": "alice", "role": "admin"}, headers=headers(admin))
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"
    assert client.get("/api/admin/check", headers=headers("alice")).json() == {"isAdmin": True}

    users = client.get("/api/admin/users", headers=headers("alice")).json()["users"]
    assert {u["externalId"] for u in users} == {"root", "alice"}


def test_first_admin_setup(client, headers):
    assert client.get("/api/admin/status").json()["adminCount"] == 0

    res = client.post("/api/admin/setup", headers=headers("founder"))
    assert res.status_code == 200
    assert res.json()["userId"] == "founder"
    assert client.get("/api/admin/status").json()["adminCount"] == 1

    assert client.post("/api/admin/setup", headers=headers("latecomer")).status_code == 403


def test_activity_logging_and_admin_logs(client, headers, admin, log_buffer):
    res = client.post(
        "/api/logs/activity",
        json={"action": "button_click", "path": "/waste-management", "elementId": "propose"},
        headers={**headers("bob"), "x-forwarded-for": "203.0.113.7, 10.0.0.1"},
    )
    assert res.json() == {"success": True}
    log_buffer.flush()

    logs = client.get("/api/admin/logs", params={"action": "button_click"}, headers=headers(admin)).json()
    assert logs["pagination"]["total"] == 1
    entry = logs["logs"][0]
    assert entry["userId"] == "bob"
    assert entry["route"] == "/waste-management"
    assert entry["ip"] == "203.0.113.7"
    assert entry["data"]["elementId"] == "propose"


def test_requests_are_logged(client, db, log_buffer):
    client.get("/api/projects/public")
    log_buffer.flush()
    messages = [e["message"] for e in db["log"].find({"route": "/api/projects/public"})]
    assert any(m.startswith("API Request: GET") for m in messages)
    assert any(m.startswith("API Response: GET") and " 200 " in m for m in messages)


def test_admin_logs_are_admin_only(client, headers, add_user):
    add_user("bob")
    assert client.get("/api/admin/logs", headers=headers("bob")).status_code == 403
    assert client.get("/api/admin/logs").status_code == 401


def test_identity_webhook(client, db, monkeypatch):
    monkeypatch.setattr(main, "WEBHOOK_SECRET", "s3cret")
    event = {"type": "user.created", "data": {"id": "user_9", "first_name": "Nina", "email_addresses": [{"email_address": "n@x.org"}]}}

    assert client.post("/api/webhooks/identity", json=event).status_code == 401
    assert client.post("/api/webhooks/identity", json=event, headers={"X-Webhook-Secret": "wrong"}).status_code == 401

    res = client.post("/api/webhooks/identity", json=event, headers={"X-Webhook-Secret": "s3cret"})
    assert res.json()["result"] == "synced"
    assert db["user"].find_one({"externalId": "user_9"})["email"] == "n@x.org"


def test_missing_database_is_reported(client, monkeypatch):
    main.app.dependency_overrides.clear()
    monkeypatch.setattr(database, "db", None)
    res = client.get("/api/projects/public")
    assert res.status_code == 503
    assert res.json()["message"] == "Database not configured"


def test_admin_check_without_database(client, headers, monkeypatch):
    main.app.dependency_overrides.clear()
    monkeypatch.setattr(database, "db", None)
    res = client.get("/api/admin/check", headers=headers("alice"))
    assert res.status_code == 200
    assert res.json() == {"isAdmin": False}
    assert client.get("/api/admin/check").status_code == 401
