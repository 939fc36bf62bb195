import pytest

from app import config

API_KEY = config.API_KEY
USER_ID = "user-1"
HEADERS = {"X-API-Key": API_KEY, "X-User-Id": USER_ID}
OTHER_HEADERS = {"X-API-Key": API_KEY, "X-User-Id": "user-2"}

SCHEDULE_WORKFLOW = {
    "name": "Morning digest",
    "type": "schedule",
    "description": "Email me a summary of unread messages",
    "schedule_config": {"type": "daily", "time": "09:00"},
    "metadata": {"source": "builder"},
    "steps": [
        {"step_order": 2, "type": "action", "service": "gmail", "action": "send"},
        {"step_order": 1, "type": "trigger", "service": "schedule", "action": "daily"},
    ],
}

TRIGGER_WORKFLOW = {
    "name": "Reply to new mail",
    "type": "trigger",
    "description": "Draft a reply whenever a new email arrives",
}

GMAIL_TRIGGER = {
    "toolkit_slug": "gmail",
    "trigger_name": "GMAIL_NEW_GMAIL_MESSAGE",
    "connected_account_id": "ca_gmail",
    "trigger_config": {"labelIds": "INBOX"},
}


def _create(client, workflow=SCHEDULE_WORKFLOW, headers=HEADERS):
    response = client.post("/workflows", json=workflow, headers=headers)
    assert response.status_code == 200
    return response.json()


def _activate(client, workflow_id, active=True):
    return client.post(
        f"/workflows/{workflow_id}/activate", json={"active": active}, headers=HEADERS
    )


def test_auth_required(client):
    response = client.get("/workflows")
    assert response.status_code in (401, 403)


def test_invalid_api_key(client):
    response = client.get("/workflows", headers={"X-API-Key": "wrong-key", "X-User-Id": USER_ID})
    assert response.status_code == 401


def test_user_header_required(client):
    response = client.get("/workflows", headers={"X-API-Key": API_KEY})
    assert response.status_code == 401


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


# ── Workflow CRUD ───────────────────────────────────────────────────────────


def test_create_workflow(client):
    data = _create(client)
    assert data["name"] == "Morning digest"
    assert data["type"] == "schedule"
    assert data["active"] is False
    assert data["next_run_at"] is None
    assert data["metadata"] == {"source": "builder"}
    assert [s["step_order"] for s in data["steps"]] == [1, 2]


def test_create_workflow_blank_name(client):
    response = client.post(
        "/workflows", json={**SCHEDULE_WORKFLOW, "name": "   "}, headers=HEADERS
    )
    assert response.status_code == 400


def test_create_workflow_invalid_type(client):
    response = client.post(
        "/workflows", json={**SCHEDULE_WORKFLOW, "type": "cron"}, headers=HEADERS
    )
    assert response.status_code == 422


def test_list_workflows_scoped_to_user(client):
    _create(client)
    _create(client, TRIGGER_WORKFLOW)
    _create(client, headers=OTHER_HEADERS)

    mine = client.get("/workflows", headers=HEADERS).json()
    theirs = client.get("/workflows", headers=OTHER_HEADERS).json()
    assert len(mine) == 2
    assert len(theirs) == 1


def test_get_other_users_workflow(client):
    wf = _create(client)
    response = client.get(f"/workflows/{wf['id']}", headers=OTHER_HEADERS)
    assert response.status_code == 404


def test_update_workflow(client):
    wf = _create(client)
    response = client.put(
        f"/workflows/{wf['id']}",
        json={"name": "Evening digest", "metadata": {"source": "api"}},
        headers=HEADERS,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Evening digest"
    assert data["metadata"] == {"source": "api"}
    assert data["description"] == SCHEDULE_WORKFLOW["description"]


def test_delete_workflow(client):
    wf = _create(client)
    response = client.delete(f"/workflows/{wf['id']}", headers=HEADERS)
    assert response.status_code == 200
    assert client.get(f"/workflows/{wf['id']}", headers=HEADERS).status_code == 404


def test_delete_workflow_tears_down_triggers(client, broker):
    wf = _create(client, TRIGGER_WORKFLOW)
    client.post(f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS)
    _activate(client, wf["id"])

    client.delete(f"/workflows/{wf['id']}", headers=HEADERS)
    assert broker.deleted_triggers == ["ti_1"]


# ── Activation ──────────────────────────────────────────────────────────────


def test_activate_schedule_workflow(client):
    wf = _create(client)
    response = _activate(client, wf["id"])
    assert response.status_code == 200
    data = response.json()
    assert data["active"] is True
    assert data["next_run_at"] is not None

    stored = client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()
    assert stored["active"] is True
    assert stored["next_run_at"] == data["next_run_at"]
    assert stored["next_run_at"].endswith("T09:00:00+00:00")


def test_deactivate_schedule_workflow(client):
    wf = _create(client)
    _activate(client, wf["id"])
    response = _activate(client, wf["id"], active=False)
    assert response.status_code == 200

    stored = client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()
    assert stored["active"] is False
    assert stored["next_run_at"] is None


def test_activate_invalid_schedule(client):
    wf = _create(
        client,
        {**SCHEDULE_WORKFLOW, "schedule_config": {"type": "daily", "timezone": "Mars/Base"}},
    )
    response = _activate(client, wf["id"])
    assert response.status_code == 400
    assert client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()["active"] is False


def test_update_schedule_rearms_active_workflow(client):
    wf = _create(client)
    _activate(client, wf["id"])
    response = client.put(
        f"/workflows/{wf['id']}",
        json={"schedule_config": {"type": "daily", "time": "17:30"}},
        headers=HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["next_run_at"].endswith("T17:30:00+00:00")


def test_update_schedule_rejects_invalid_config(client):
    wf = _create(client)
    _activate(client, wf["id"])
    response = client.put(
        f"/workflows/{wf['id']}",
        json={"schedule_config": {"type": "interval", "interval": -5}},
        headers=HEADERS,
    )
    assert response.status_code == 400


@pytest.mark.parametrize(
    "schedule_config",
    [
        {"type": "daily", "time": 9},
        {"type": "weekly", "day_of_week": None},
        {"type": "interval", "interval": {}},
    ],
)
def test_activate_rejects_malformed_schedule_values(client, schedule_config):
    wf = _create(client, {**SCHEDULE_WORKFLOW, "schedule_config": schedule_config})
    response = _activate(client, wf["id"])
    assert response.status_code == 400
    assert client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()["active"] is False


def test_update_rejects_malformed_schedule_values(client):
    wf = _create(client)
    _activate(client, wf["id"])
    response = client.put(
        f"/workflows/{wf['id']}",
        json={"schedule_config": {"type": "daily", "time": 9}},
        headers=HEADERS,
    )
    assert response.status_code == 400


def test_activate_trigger_workflow_without_triggers(client):
    wf = _create(client, TRIGGER_WORKFLOW)
    response = _activate(client, wf["id"])
    assert response.status_code == 400
    assert "No triggers" in response.json()["detail"]


def test_activate_and_deactivate_trigger_workflow(client, broker):
    wf = _create(client, TRIGGER_WORKFLOW)
    client.post(f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS)

    response = _activate(client, wf["id"])
    assert response.status_code == 200
    data = response.json()
    assert data["activated_triggers"] == 1
    assert data["webhook_url"].endswith(f"/webhooks/composio/{wf['id']}")
    created = broker.created_triggers[0]
    assert created["slug"] == "GMAIL_NEW_GMAIL_MESSAGE"
    assert created["config"] == {"labelIds": "INBOX", "webhook_url": data["webhook_url"]}

    triggers = client.get(f"/workflows/{wf['id']}/triggers", headers=HEADERS).json()
    assert triggers[0]["active"] is True
    assert triggers[0]["broker_trigger_id"] == "ti_1"
    assert triggers[0]["metadata"]["webhook_url"] == data["webhook_url"]

    response = _activate(client, wf["id"], active=False)
    assert response.json()["deactivated_triggers"] == 1
    assert broker.deleted_triggers == ["ti_1"]
    triggers = client.get(f"/workflows/{wf['id']}/triggers", headers=HEADERS).json()
    assert triggers[0]["active"] is False
    assert triggers[0]["broker_trigger_id"] is None
    assert client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()["active"] is False


def test_activation_skips_rejected_triggers(client, broker):
    broker.fail_create = True
    wf = _create(client, TRIGGER_WORKFLOW)
    client.post(f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS)

    response = _activate(client, wf["id"])
    assert response.status_code == 200
    assert response.json()["activated_triggers"] == 0


# ── Triggers and connections ────────────────────────────────────────────────


def test_add_trigger_to_schedule_workflow(client):
    wf = _create(client)
    response = client.post(
        f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS
    )
    assert response.status_code == 400


def test_delete_trigger(client, broker):
    wf = _create(client, TRIGGER_WORKFLOW)
    trigger = client.post(
        f"/workflows/{wf['id']}/triggers", json=GMAIL_TRIGGER, headers=HEADERS
    ).json()
    _activate(client, wf["id"])

    response = client.delete(
        f"/workflows/{wf['id']}/triggers/{trigger['id']}", headers=HEADERS
    )
    assert response.status_code == 200
    assert broker.deleted_triggers == ["ti_1"]
    assert client.get(f"/workflows/{wf['id']}/triggers", headers=HEADERS).json() == []


def test_available_triggers(client):
    response = client.get("/triggers", headers=HEADERS)
    assert response.status_code == 200
    data = response.json()
    assert [t["slug"] for t in data["triggers"]] == ["GMAIL_NEW_GMAIL_MESSAGE"]
    assert data["triggers"][0]["schema"]["properties"]["labelIds"]["type"] == "string"
    assert [a["toolkit"] for a in data["connected_accounts"]] == ["gmail"]


def test_available_triggers_without_connections(client, broker):
    broker.accounts = []
    data = client.get("/triggers", headers=HEADERS).json()
    assert data["triggers"] == []
    assert data["message"] == "No connected integrations found"


def test_initiate_and_delete_connection(client, broker):
    response = client.post(
        "/connections/initiate", json={"auth_config_id": "ac_gmail"}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json() == {
        "redirect_url": "https://auth.example.com/ac_gmail",
        "connection_id": "ca_new",
    }

    response = client.delete("/connections/ca_gmail", headers=HEADERS)
    assert response.status_code == 200
    assert broker.deleted_connections == ["ca_gmail"]


# ── Execution ───────────────────────────────────────────────────────────────


def test_execute_inactive_workflow(client):
    wf = _create(client)
    response = client.post(f"/workflows/{wf['id']}/execute", headers=HEADERS)
    assert response.status_code == 400
    data = response.json()
    assert data["success"] is False
    assert data["error"] == "Workflow is not active"
    assert isinstance(data["execution_time"], int)


def test_execute_unknown_workflow(client):
    response = client.post("/workflows/missing/execute", headers=HEADERS)
    assert response.status_code == 404


def test_execute_workflow(client, llm):
    wf = _create(client)
    _activate(client, wf["id"])

    response = client.post(f"/workflows/{wf['id']}/execute", headers=HEADERS)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["output"] == llm.reply
    assert data["run_id"]

    runs = client.get(f"/workflows/{wf['id']}/runs", headers=HEADERS).json()
    assert len(runs) == 1
    assert runs[0]["status"] == "completed"
    assert runs[0]["input_data"] == {"triggered_by": "manual"}

    run = client.get(f"/runs/{data['run_id']}", headers=HEADERS).json()
    assert run["output_data"]["result"] == llm.reply

    live_steps = client.get(f"/runs/{data['run_id']}/live-steps", headers=HEADERS).json()
    assert [s["step_number"] for s in live_steps] == list(range(1, len(live_steps) + 1))
    assert live_steps[-1]["step_type"] == "completion"

    assert client.get(f"/workflows/{wf['id']}", headers=HEADERS).json()["last_run_at"]


def test_runs_hidden_from_other_users(client):
    wf = _create(client)
    _activate(client, wf["id"])
    run_id = client.post(f"/workflows/{wf['id']}/execute", headers=HEADERS).json()["run_id"]

    assert client.get(f"/runs/{run_id}", headers=OTHER_HEADERS).status_code == 404
    assert client.get(f"/workflows/{wf['id']}/runs", headers=OTHER_HEADERS).status_code == 404


# ── Scheduler control ───────────────────────────────────────────────────────


def test_scheduler_status(client):
    response = client.get("/workflows/scheduler", headers=HEADERS)
    assert response.status_code == 200
    status = response.json()["status"]
    assert status["is_running"] is False
    assert status["interval_seconds"] == 3600


def test_scheduler_start_and_stop(client):
    response = client.post(
        "/workflows/scheduler", json={"action": "start"}, headers=HEADERS
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Scheduler started"
    assert response.json()["status"]["is_running"] is True

    response = client.post(
        "/workflows/scheduler", json={"action": "stop"}, headers=HEADERS
    )
    assert response.json()["message"] == "Scheduler stopped"
    assert response.json()["status"]["is_running"] is False


def test_scheduler_invalid_action(client):
    response = client.post(
        "/workflows/scheduler", json={"action": "restart"}, headers=HEADERS
    )
    assert response.status_code == 422
