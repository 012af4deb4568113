from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from task_orchestrator.api.main import create_app
from task_orchestrator.storage.memory import InMemoryTaskStorage


@pytest.fixture
def client(test_settings, make_toolbox):
    app = create_app(
        storage=InMemoryTaskStorage(),
        settings_override=test_settings,
        toolbox=make_toolbox(),
    )
    with TestClient(app) as test_client:
        yield test_client
    app.state.service.dispatcher.shutdown()


def _create(client: TestClient, title: str, **fields) -> dict:
    response = client.post("/tasks", json={"title": title, **fields})
    assert response.status_code == 201
    return response.json()


def _wait_for_log(
    client: TestClient, task_id: str, prefixes: tuple[str, ...], timeout_s: float = 20.0
) -> dict:
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        detail = client.get(f"/tasks/{task_id}").json()
        if any(log["message"].startswith(prefixes) for log in detail["logs"]):
            return detail
        time.sleep(0.05)
    raise TimeoutError(f"Task {task_id} did not log {prefixes} within {timeout_s:.1f}s")


def test_health_and_capabilities(client: TestClient) -> None:
    health = client.get("/health")
    capabilities = client.get("/capabilities").json()

    assert health.status_code == 200
    assert health.json() == {"status": "ok", "service": "task-orchestrator"}
    assert capabilities["handlers"] == [
        "web_browsing",
        "data_analysis",
        "document_processing",
        "code_execution",
        "general_purpose",
    ]
    assert "browser" in capabilities["tools"]


def test_task_crud(client: TestClient) -> None:
    created = _create(client, "Write notes", description="Quarterly review", priority="HIGH")

    assert created["status"] == "PENDING"
    assert created["priority"] == "HIGH"

    updated = client.patch(f"/tasks/{created['task_id']}", json={"title": "Write release notes"})
    listed = client.get("/tasks").json()
    detail = client.get(f"/tasks/{created['task_id']}").json()

    assert updated.status_code == 200
    assert updated.json()["title"] == "Write release notes"
    assert updated.json()["description"] == "Quarterly review"
    assert [task["task_id"] for task in listed] == [created["task_id"]]
    assert detail["steps"] == []
    assert detail["result"] is None


def test_validation_and_missing_tasks(client: TestClient) -> None:
    empty_title = client.post("/tasks", json={"title": ""})
    bad_priority = client.post("/tasks", json={"title": "x", "priority": "URGENT"})

    assert empty_title.status_code == 422
    assert any(item["loc"] == ["body", "title"] for item in empty_title.json()["detail"])
    assert bad_priority.status_code == 422
    for method, path in (
        ("get", "/tasks/does-not-exist"),
        ("patch", "/tasks/does-not-exist"),
        ("post", "/tasks/does-not-exist/execute"),
        ("post", "/tasks/does-not-exist/cancel"),
        ("get", "/tasks/does-not-exist/tool-usages"),
    ):
        kwargs = {"json": {}} if method == "patch" else {}
        response = getattr(client, method)(path, **kwargs)
        assert response.status_code == 404, path
        assert response.json()["detail"] == "Task does-not-exist not found"


def test_status_rules_return_403(client: TestClient) -> None:
    task_id = _create(client, "Pending task")["task_id"]

    for path in (f"/tasks/{task_id}/close", f"/tasks/{task_id}/cancel"):
        response = client.post(path)
        assert response.status_code == 403, path
        assert "PENDING" in response.json()["detail"]

    delete = client.delete(f"/tasks/{task_id}")
    assert delete.status_code == 403


def test_execute_resolve_close_and_delete(client: TestClient, fake_browser) -> None:
    task_id = _create(client, "Summarize URL https://example.com")["task_id"]

    accepted = client.post(f"/tasks/{task_id}/execute")
    assert accepted.status_code == 202
    assert accepted.json() == {"task_id": task_id, "status": "accepted"}

    detail = _wait_for_log(
        client,
        task_id,
        ("Task completed successfully", "Task execution failed"),
    )
    assert detail["task"]["status"] == "RESOLVED"
    assert [step["status"] for step in detail["steps"]] == ["COMPLETED"]
    assert json.loads(detail["result"]["content"])["steps"][0]["result"]["title"] == "Example Domain"
    assert detail["logs"][-1]["message"] == "Task completed successfully"
    assert fake_browser.requested == ["https://example.com"]

    again = client.post(f"/tasks/{task_id}/execute")
    assert again.status_code == 403

    usages = client.get(f"/tasks/{task_id}/tool-usages").json()
    assert [usage["tool_name"] for usage in usages] == ["browser"]
    assert usages[0]["ended_at"] is not None

    closed = client.post(f"/tasks/{task_id}/close")
    assert closed.status_code == 200
    assert closed.json()["status"] == "CLOSED"

    deleted = client.delete(f"/tasks/{task_id}")
    assert deleted.status_code == 204
    assert client.get(f"/tasks/{task_id}").status_code == 404
