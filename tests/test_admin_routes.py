import pytest

from app.tools.cli_chat import text_message_payload


@pytest.fixture
def customer_id(pipeline, deliver, clock):
    deliver(text_message_payload("15551234567", "Hi", name="Ada", message_id="wamid.1", ts=clock.now.timestamp()))
    return pipeline.customers.get_by_phone("15551234567").id


def test_settings_mask_access_token(client):
    data = client.get("/api/settings").json()
    assert data["access_token"] == "***oken"
    assert data["phone_number_id"] == "1234567890"
    assert data["business_hours"]["timezone"] == "America/New_York"


def test_partial_settings_update(client):
    r = client.put("/api/settings", json={
        "is_active": False,
        "auto_reply": {"new_customer_message": "Welcome!"},
    })
    assert r.status_code == 200
    data = client.get("/api/settings").json()
    assert data["is_active"] is False
    assert data["auto_reply"]["new_customer_message"] == "Welcome!"
    assert data["phone_number_id"] == "1234567890"


@pytest.mark.parametrize("body", [
    {"business_hours": {"schedule": {"monday": {"start": "9am", "end": "17:00"}}}},
    {"business_hours": {"schedule": {"funday": {"start": "09:00", "end": "17:00"}}}},
    {"unknown_field": True},
])
def test_invalid_settings_rejected(client, body):
    assert client.put("/api/settings", json=body).status_code == 422


def test_settings_reset(client):
    client.put("/api/settings", json={"is_active": False})
    data = client.post("/api/settings/reset").json()
    assert data["is_active"] is True
    assert data["access_token"] == ""


def test_customers_list_and_status(client, customer_id):
    customers = client.get("/api/customers").json()["customers"]
    assert [c["name"] for c in customers] == ["Ada"]
    assert customers[0]["is_new"] is False

    r = client.put(f"/api/customers/{customer_id}/status", json={"status": "blocked"})
    assert r.status_code == 200
    assert r.json()["status"] == "blocked"
    assert client.get("/api/customers", params={"status": "active"}).json()["customers"] == []


def test_customer_status_errors(client, customer_id):
    assert client.put("/api/customers/nope/status", json={"status": "blocked"}).status_code == 404
    assert client.put(f"/api/customers/{customer_id}/status", json={"status": "gone"}).status_code == 422


def test_messages_by_customer(client, customer_id):
    msgs = client.get("/api/messages", params={"customer_id": customer_id}).json()["messages"]
    assert sorted(m["direction"] for m in msgs) == ["incoming", "outgoing"]
    assert client.get("/api/messages", params={"customer_id": "nope"}).json()["messages"] == []


def test_manual_send(client, channel, customer_id):
    r = client.post("/api/messages", json={"customer_id": customer_id, "content": "Your order shipped."})

    assert r.status_code == 201
    assert r.json()["is_auto_reply"] is False
    assert channel.sent[-1][1] == "Your order shipped."


def test_manual_send_errors(client, channel, customer_id):
    assert client.post("/api/messages", json={"customer_id": "nope", "content": "x"}).status_code == 404
    assert client.post("/api/messages", json={"customer_id": customer_id, "content": ""}).status_code == 422

    channel.fail_send = True
    assert client.post("/api/messages", json={"customer_id": customer_id, "content": "x"}).status_code == 502

    client.put("/api/settings", json={"access_token": ""})
    assert client.post("/api/messages", json={"customer_id": customer_id, "content": "x"}).status_code == 409


def test_status_counts(client, customer_id):
    data = client.get("/api/status").json()
    assert data["ok"] is True
    assert data["customers"] == 1
    assert data["messages"] == 2
    assert data["has_credentials"] is True
