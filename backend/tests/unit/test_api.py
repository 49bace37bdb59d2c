# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
API tests for the workflow and enrollment routes

Runs the full app against temporary storage and in-memory collaborators.
"""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from crm_workflows.core.config import Config
from crm_workflows.main import create_app


@pytest.fixture
def client(tmp_dir, collaborators):
    """Create test client; the context manager runs startup"""
    config = Config(
        workflows_path=str(Path(tmp_dir) / "workflows"),
        enrollments_path=str(Path(tmp_dir) / "enrollments"),
        scheduler_poll_interval=0,
    )
    app = create_app(config=config, collaborators=collaborators)
    with TestClient(app) as test_client:
        yield test_client


def create_workflow(client, name="Won deals", trigger_config=None):
    response = client.post(
        "/workflows",
        json={"name": name, "triggerType": "deal_stage_changed", "config": trigger_config or {}},
    )
    assert response.status_code == 200
    return response.json()


def insert(client, workflow_id, parent_id, kind, branch=None):
    response = client.post(
        f"/workflows/{workflow_id}/nodes",
        json={"parentId": parent_id, "branch": branch, "type": kind},
    )
    assert response.status_code == 200
    return response.json()["node_id"]


def trigger_id(workflow):
    return workflow["config"]["nodes"][0]["id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_list_and_get(client):
    workflow = create_workflow(client)

    listed = client.get("/workflows").json()
    assert [w["id"] for w in listed] == [workflow["id"]]
    assert listed[0]["active"] is False

    response = client.get(f"/workflows/{workflow['id']}")
    assert response.status_code == 200
    assert response.json()["name"] == "Won deals"


def test_get_missing_workflow(client):
    assert client.get("/workflows/wf_missing").status_code == 404


def test_graph_edits(client):
    workflow = create_workflow(client)
    node_id = insert(client, workflow["id"], trigger_id(workflow), "delay")

    response = client.patch(
        f"/workflows/{workflow['id']}/nodes/{node_id}",
        json={"delayType": "days", "delayValue": 2},
    )
    assert response.status_code == 200
    assert response.json()["node"]["data"] == {"delayType": "days", "delayValue": 2}

    response = client.get(f"/workflows/{workflow['id']}", params={"version": 1})
    assert len(response.json()["config"]["nodes"]) == 1


def test_graph_edit_errors(client):
    workflow = create_workflow(client)
    cond = insert(client, workflow["id"], trigger_id(workflow), "condition")
    insert(client, workflow["id"], cond, "action", branch="true")

    response = client.delete(f"/workflows/{workflow['id']}/nodes/{trigger_id(workflow)}")
    assert response.status_code == 400
    assert response.json()["error"] == "CannotDeleteTrigger"

    response = client.delete(f"/workflows/{workflow['id']}/nodes/{cond}")
    assert response.status_code == 400
    assert response.json()["error"] == "ConditionHasBranches"

    response = client.patch(f"/workflows/{workflow['id']}/nodes/node_missing", json={"x": 1})
    assert response.status_code == 404

    response = client.delete(f"/workflows/{workflow['id']}/nodes/{cond}", params={"keep_branch": "true"})
    assert response.status_code == 200
    assert [n["type"] for n in response.json()["workflow"]["config"]["nodes"]] == ["trigger", "action"]


def test_activation_and_duplicate(client):
    workflow = create_workflow(client)
    assert client.post(f"/workflows/{workflow['id']}/activate").status_code == 400

    insert(client, workflow["id"], trigger_id(workflow), "action")
    activated = client.post(f"/workflows/{workflow['id']}/activate").json()
    assert activated["active"] is True

    copy = client.post(f"/workflows/{workflow['id']}/duplicate", json={"name": "Copy of won"}).json()
    assert copy["id"] != workflow["id"]
    assert copy["active"] is False

    assert client.post(f"/workflows/{workflow['id']}/deactivate").json()["active"] is False


def test_delete_workflow(client):
    workflow = create_workflow(client)
    assert client.delete(f"/workflows/{workflow['id']}").status_code == 200
    assert client.get(f"/workflows/{workflow['id']}").status_code == 404
    assert client.delete(f"/workflows/{workflow['id']}").status_code == 404


def test_event_runs_enrollment(client, collaborators):
    workflow = create_workflow(client, trigger_config={"to_stage_id": "won"})
    insert(client, workflow["id"], trigger_id(workflow), "action")
    client.post(f"/workflows/{workflow['id']}/activate")

    response = client.post("/events", json={
        "trigger_type": "deal_stage_changed",
        "entity_id": "deal-1",
        "event_id": "evt-1",
        "snapshot": {
            "from_stage_id": "lead",
            "to_stage_id": "won",
            "pipeline": "sales",
            "patient": {"id": "pat-1", "email": "jane@example.com"},
        },
    })

    assert response.status_code == 200
    [enrollment] = response.json()["enrollments"]
    assert enrollment["status"] == "completed"
    assert [e.recipient for e in collaborators.mailer.sent] == ["jane@example.com"]

    fetched = client.get(f"/enrollments/{enrollment['enrollment_id']}")
    assert fetched.status_code == 200
    assert fetched.json()["workflow_id"] == workflow["id"]

    listed = client.get("/enrollments", params={"workflow_id": workflow["id"]}).json()
    assert len(listed) == 1


def test_delayed_enrollment_waits_for_wakeup(client):
    workflow = create_workflow(client)
    delay = insert(client, workflow["id"], trigger_id(workflow), "delay")
    insert(client, workflow["id"], delay, "action")
    client.post(f"/workflows/{workflow['id']}/activate")

    response = client.post("/events", json={
        "trigger_type": "deal_stage_changed",
        "entity_id": "deal-1",
        "snapshot": {"from_stage_id": "lead", "to_stage_id": "won"},
    })
    [enrollment] = response.json()["enrollments"]
    assert enrollment["status"] == "waiting_delay"

    run = client.post("/wakeups/run").json()
    assert run == {"delivered": 0, "pending": 1}


def test_wakeup_for_unknown_enrollment(client):
    response = client.post("/wakeups", json={"wakeup_id": "wk_1", "enrollment_id": "enr_missing"})
    assert response.status_code == 404


def test_missing_enrollment(client):
    assert client.get("/enrollments/enr_missing").status_code == 404
