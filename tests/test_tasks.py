from __future__ import annotations

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAgentClient, RecordingSheets
from mission_control.app.errors import AgentCallError


def test_task_lifecycle(
    client: TestClient, agent_client: FakeAgentClient, store_path: Path
) -> None:
    agent_client.replies["codex"] = {"reply": "plan, result, next steps"}

    create_response = client.post(
        "/api/tasks",
        json={"title": "Build booking form", "agentId": "codex", "details": "Use the new API"},
    )
    assert create_response.status_code == 200
    created = create_response.json()
    assert created["status"] == "queued"
    assert created["id"].startswith("task_")
    assert created["logs"][0]["text"] == "Task queued for codex"
    assert "result" not in created
    assert "error" not in created

    dispatch_response = client.post(f"/api/tasks/{created['id']}/dispatch")
    assert dispatch_response.status_code == 200
    done = dispatch_response.json()
    assert done["status"] == "done"
    assert done["result"] == {"reply": "plan, result, next steps"}
    assert [log["text"] for log in done["logs"]] == [
        "Task queued for codex",
        "Dispatching to agent...",
        "Task completed",
    ]

    call = agent_client.calls[-1]
    assert call["agent_id"] == "codex"
    assert call["timeout_s"] == 300
    assert call["message"] == (
        "You are assigned task: Build booking form\n"
        "Details: Use the new API\n"
        "Return: (1) brief plan, (2) execution result, (3) next steps."
    )

    persisted = json.loads(store_path.read_text(encoding="utf-8"))
    assert persisted["tasks"][0]["status"] == "done"


def test_dispatch_failure_marks_task_failed_and_returns_500(
    client: TestClient, agent_client: FakeAgentClient
) -> None:
    agent_client.replies["research"] = AgentCallError("command_timeout command=openclaw")
    created = client.post("/api/tasks", json={"title": "Scan market", "agentId": "research"})
    task_id = created.json()["id"]

    response = client.post(f"/api/tasks/{task_id}/dispatch")

    assert response.status_code == 500
    body = response.json()
    assert "command_timeout" in body["error"]
    assert body["task"]["status"] == "failed"
    assert "command_timeout" in body["task"]["error"]
    assert "result" not in body["task"]
    assert body["task"]["logs"][-1]["text"].startswith("Task failed: ")
    assert len(body["task"]["logs"]) == 3

    overview = client.get("/api/overview").json()
    assert overview["tasks"][0]["status"] == "failed"


def test_dispatch_prompt_omits_empty_details(
    client: TestClient, agent_client: FakeAgentClient
) -> None:
    task_id = client.post("/api/tasks", json={"title": "Ping", "agentId": "main"}).json()["id"]
    client.post(f"/api/tasks/{task_id}/dispatch")

    assert "Details:" not in agent_client.calls[-1]["message"]


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"title": "No agent"},
        {"agentId": "codex"},
        {"title": "   ", "agentId": "codex"},
    ],
)
def test_create_task_requires_title_and_agent(
    client: TestClient, integrations, payload: dict[str, str]
) -> None:
    response = client.post("/api/tasks", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "title and agentId are required"
    assert client.get("/api/overview").json()["tasks"] == []
    assert integrations.sheets.rows == []


def test_create_task_without_body_is_a_validation_error(client: TestClient) -> None:
    response = client.post("/api/tasks")
    assert response.status_code == 400
    assert response.json() == {"error": "title and agentId are required"}


def test_malformed_json_body_is_rejected_with_error_key(client: TestClient) -> None:
    response = client.post(
        "/api/tasks", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json() == {"error": "invalid request body"}


def test_dispatch_unknown_task_is_not_found(client: TestClient) -> None:
    response = client.post("/api/tasks/task_missing/dispatch")
    assert response.status_code == 404
    assert response.json()["error"] == "Task not found"


def test_create_task_mirrors_row_to_sheet(client: TestClient, integrations) -> None:
    sheets: RecordingSheets = integrations.sheets
    task = client.post(
        "/api/tasks", json={"title": "Invoice reminders", "agentId": "invoice"}
    ).json()

    assert len(sheets.rows) == 1
    sheet_name, values = sheets.rows[0]
    assert sheet_name == "tasks"
    assert values[1:] == [task["id"], "Invoice reminders", "invoice", "queued", ""]
    assert values[0].endswith("Z")


def test_agent_id_is_not_checked_against_directory(client: TestClient) -> None:
    response = client.post("/api/tasks", json={"title": "Future work", "agentId": "not-yet-born"})
    assert response.status_code == 200
    assert response.json()["agentId"] == "not-yet-born"


def test_overview_lists_newest_tasks_first(client: TestClient) -> None:
    first = client.post("/api/tasks", json={"title": "First", "agentId": "codex"}).json()
    second = client.post("/api/tasks", json={"title": "Second", "agentId": "codex"}).json()

    overview = client.get("/api/overview").json()

    assert {task["id"] for task in overview["tasks"]} == {first["id"], second["id"]}
    created = [task["createdAt"] for task in overview["tasks"]]
    assert created == sorted(created, reverse=True)
    assert [agent["id"] for agent in overview["agents"]][0] == "main"
    assert overview["sessionsByAgent"]["codex"] == [{"key": "codex:main"}]
    assert overview["warRoom"] == {"messages": []}
    assert overview["fallback"] is False


def test_overview_uses_fallback_roster_when_cli_is_missing(
    make_client, agent_client: FakeAgentClient
) -> None:
    agent_client.agents = None
    overview = make_client().get("/api/overview").json()

    assert overview["fallback"] is True
    assert [agent["id"] for agent in overview["agents"]] == [
        "main",
        "codex",
        "research",
        "quote",
        "invoice",
        "integration",
    ]
    assert overview["sessionsByAgent"] == {
        "main": [],
        "codex": [],
        "research": [],
        "quote": [],
        "invoice": [],
        "integration": [],
    }
