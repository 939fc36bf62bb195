import time

from app import config
from app.db import repository

HEADERS = {"X-API-Key": config.API_KEY, "X-User-Id": "user-1"}

GMAIL_TRIGGER = {
    "toolkit_slug": "gmail",
    "trigger_name": "GMAIL_NEW_GMAIL_MESSAGE",
    "connected_account_id": "ca_gmail",
}

EVENT = {
    "trigger_id": "ti_1",
    "trigger_name": "GMAIL_NEW_GMAIL_MESSAGE",
    "payload": {"subject": "Quarterly report", "from": "boss@example.com"},
}


def _trigger_workflow(client, activate=True):
    wf = client.post(
        "/workflows",
        json={"name": "Reply to new mail", "type": "trigger", "description": "Draft a reply"},
        headers=HEADERS,
    ).json()
    trigger = client.post(
        f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS
    ).json()
    if activate:
        client.post(f"/workflows/{wf['id']}/activate", json={"active": True}, headers=HEADERS)
    return wf["id"], trigger["id"]


def _wait_for_status(client, run_id, status, attempts=50):
    for _ in range(attempts):
        run = client.get(f"/runs/{run_id}", headers=HEADERS).json()
        if run["status"] == status:
            return run
        time.sleep(0.05)
    return run


def test_webhook_starts_run(client):
    workflow_id, trigger_id = _trigger_workflow(client)

    response = client.post(f"/webhooks/composio/{workflow_id}", json=EVENT)
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "received"
    assert data["trigger_id"] == trigger_id
    assert data["message"] == "Workflow execution started"

    run = _wait_for_status(client, data["run_id"], "completed")
    assert run["status"] == "completed"
    assert run["input_data"]["triggered_by"] == "webhook"
    assert run["input_data"]["trigger"]["payload"] == EVENT["payload"]
    assert run["input_data"]["trigger"]["toolkit"] == "gmail"

    runs = client.get(f"/workflows/{workflow_id}/runs", headers=HEADERS).json()
    assert [r["id"] for r in runs] == [data["run_id"]]


def test_webhook_for_inactive_trigger(client, session_factory):
    workflow_id, trigger_id = _trigger_workflow(client)
    db = session_factory()
    try:
        repository.update_trigger(
            db, trigger_id, active=False, broker_trigger_id="ti_1", metadata={}
        )
    finally:
        db.close()

    response = client.post(f"/webhooks/composio/{workflow_id}", json=EVENT)
    assert response.status_code == 200
    assert "not active" in response.json()["message"]
    assert client.get(f"/workflows/{workflow_id}/runs", headers=HEADERS).json() == []


def test_webhook_for_inactive_workflow(client):
    workflow_id, _ = _trigger_workflow(client, activate=False)

    response = client.post(f"/webhooks/composio/{workflow_id}", json=EVENT)
    assert response.status_code == 200
    assert response.json()["message"] == "Workflow is not active, ignoring trigger"
    assert client.get(f"/workflows/{workflow_id}/runs", headers=HEADERS).json() == []


def test_webhook_for_unknown_trigger(client):
    workflow_id, _ = _trigger_workflow(client)

    response = client.post(
        f"/webhooks/composio/{workflow_id}", json={**EVENT, "trigger_id": "ti_other"}
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Trigger not found for this workflow"
    assert client.get(f"/workflows/{workflow_id}/runs", headers=HEADERS).json() == []


def test_webhook_for_unknown_workflow(client):
    response = client.post("/webhooks/composio/missing", json=EVENT)
    assert response.status_code == 404


def test_webhook_without_trigger_id(client):
    workflow_id, _ = _trigger_workflow(client)
    response = client.post(f"/webhooks/composio/{workflow_id}", json={"payload": {}})
    assert response.status_code == 400


def test_webhook_with_invalid_body(client):
    workflow_id, _ = _trigger_workflow(client)
    response = client.post(
        f"/webhooks/composio/{workflow_id}",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "error"
    assert data["message"] == "Webhook received but processing failed"
    assert client.get(f"/workflows/{workflow_id}/runs", headers=HEADERS).json() == []


def test_webhook_with_non_object_body(client):
    workflow_id, _ = _trigger_workflow(client)
    response = client.post(f"/webhooks/composio/{workflow_id}", json=["ti_1"])
    assert response.status_code == 200
    assert response.json()["status"] == "error"


def test_webhook_challenge(client):
    response = client.get("/webhooks/composio/any?challenge=abc123")
    assert response.json() == {"challenge": "abc123"}
    assert client.get("/webhooks/composio/any").json()["status"] == "ok"