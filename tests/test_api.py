from database import get_store
from main import app

HOSPITAL = {"name": "Apollo Hospital", "locality": "Jubilee Hills", "phone": "9876543210"}


def create_hospital(client, **overrides):
    r = client.post("/hospitals", json={**HOSPITAL, **overrides})
    assert r.status_code == 201, r.text
    return r.json()


def create_request(client, hospital_id, **overrides):
    body = {"hospitalId": hospital_id, "bloodGroup": "O-", "units": 2, "urgency": "critical", "patientName": "Asha"}
    r = client.post("/requests", json={**body, **overrides})
    assert r.status_code == 201, r.text
    return r.json()


def test_root(client):
    assert client.get("/").status_code == 200


def test_health_check(client):
    body = client.get("/test").json()
    assert body["connection_status"] == "Connected"
    assert body["database_name"] == "memory"


def test_health_check_without_database(client):
    app.dependency_overrides[get_store] = lambda: None
    body = client.get("/test").json()
    assert body["connection_status"] == "Not Connected"


def test_hospital_lifecycle(client):
    hospital = create_hospital(client)
    assert hospital["status"] == "inactive"
    assert hospital["mapLink"] == ""

    r = client.patch(f"/hospitals/{hospital['id']}/status", json={"status": "active"})
    assert r.json() == {"success": True}
    assert client.get(f"/hospitals/{hospital['id']}").json()["status"] == "active"
    assert [h["id"] for h in client.get("/hospitals", params={"status": "active"}).json()] == [hospital["id"]]

    assert client.delete(f"/hospitals/{hospital['id']}").status_code == 200
    assert client.get(f"/hospitals/{hospital['id']}").status_code == 404


def test_duplicate_hospital(client):
    create_hospital(client)
    r = client.post("/hospitals", json=HOSPITAL)
    assert r.status_code == 409
    assert r.json()["detail"] == "Hospital with this name already exists."


def test_invalid_hospital(client):
    r = client.post("/hospitals", json={**HOSPITAL, "phone": "12"})
    assert r.status_code == 422
    assert r.json()["detail"]["fieldErrors"] == {"phone": "Please enter a valid 10-12 digit phone number."}


def test_request_flow(client):
    hospital = create_hospital(client)
    req = create_request(client, hospital["id"], units="3")
    assert req["units"] == 3
    assert req["hospitalName"] == "Apollo Hospital"
    assert req["status"] == "open"
    assert req["createdAt"]

    listed = client.get("/requests", params={"hospital_id": hospital["id"], "blood_group": "O-"}).json()
    assert [r["id"] for r in listed] == [req["id"]]
    assert client.get("/requests", params={"blood_group": "A+"}).json() == []

    r = client.patch(f"/requests/{req['id']}", json={"units": 1, "urgency": "normal", "patientName": "Asha"})
    assert r.status_code == 200

    assert client.post(f"/requests/{req['id']}/close").status_code == 200
    assert client.post(f"/requests/{req['id']}/close").status_code == 200
    assert client.get("/requests").json() == []

    dashboard = client.get(f"/hospitals/{hospital['id']}/requests").json()
    assert [(r["id"], r["status"], r["units"]) for r in dashboard] == [(req["id"], "closed", 1)]

    r = client.patch(f"/requests/{req['id']}", json={"units": 4, "urgency": "normal", "patientName": "Asha"})
    assert r.status_code == 409

    assert client.delete(f"/requests/{req['id']}").status_code == 200
    assert client.get(f"/requests/{req['id']}").status_code == 404


def test_request_for_unknown_hospital(client):
    body = {"hospitalId": "ghost", "bloodGroup": "O-", "units": 1, "urgency": "high", "patientName": "Ravi"}
    r = client.post("/requests", json=body)
    assert r.status_code == 404
    assert r.json()["detail"] == "Selected hospital does not exist."


def test_share_messages(client):
    hospital = create_hospital(client)
    req = create_request(client, hospital["id"], patientStory="Needs surgery")
    body = client.get(f"/requests/{req['id']}/share", params={"base_url": "https://blood.example.org/"}).json()
    assert body["verification_url"] == f"https://blood.example.org/?requestId={req['id']}"
    assert "Needs surgery" in body["english"]
    assert "Apollo Hospital" in body["hindi"]


def test_reset(client):
    hospital = create_hospital(client)
    create_request(client, hospital["id"])
    assert client.post("/admin/reset").json() == {"success": True}
    assert client.get("/hospitals").json() == []
    assert client.get("/requests").json() == []


def test_unconfigured_database_returns_503(client):
    app.dependency_overrides[get_store] = lambda: None
    r = client.post("/hospitals", json=HOSPITAL)
    assert r.status_code == 503
    assert r.json()["detail"] == "Database not initialized."


def test_chat_uses_assistant(client, monkeypatch):
    import main

    captured = {}

    def fake_continue(messages):
        captured["messages"] = messages
        return "You can donate every three months."

    monkeypatch.setattr(main, "continue_chat", fake_continue)
    r = client.post("/chat", json={"messages": [{"role": "user", "content": "How often can I donate?"}]})
    assert r.json() == {"reply": "You can donate every three months."}
    assert captured["messages"][0].content == "How often can I donate?"
