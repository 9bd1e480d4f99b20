"""Tests for the HTTP API"""

import pytest

from taskgraph.main import create_app
from taskgraph.persistence import MemoryStorageAdapter

from tests.conftest import ScriptedModelClient, plan_reply


GATED = [
    {"id": "step_1", "tool": "echo", "params": {"value": "draft"}},
    {"id": "step_2", "tool": "echo", "depends_on": ["step_1"], "confirm": "Publish?"},
]


@pytest.fixture()
def replies():
    return [plan_reply([{"id": "A", "tool": "echo", "params": {"value": "hi"}}])]


@pytest.fixture()
def client(registry, replies):
    app = create_app(
        storage=MemoryStorageAdapter(),
        model_client_factory=lambda: ScriptedModelClient(*replies),
        registry_factory=lambda model_client: registry,
    )
    app.config["TESTING"] = True
    return app.test_client()


def _run(client, **body):
    return client.post("/agent/tasks", json={"prompt": "Do it", **body})


class TestService:
    def test_home_and_health(self, client):
        assert client.get("/").get_json()["status"] == "running"
        health = client.get("/health")
        assert health.status_code == 200
        assert health.get_json()["status"] == "healthy"

    def test_list_tools(self, client):
        body = client.get("/agent/tools").get_json()
        assert body["count"] == 2
        assert {t["name"] for t in body["tools"]} == {"echo", "llm_generate"}


class TestRunTask:
    def test_run_task(self, client):
        res = _run(client)
        body = res.get_json()
        assert res.status_code == 200
        assert body["success"] is True
        assert body["state"] == "complete"
        assert body["output"] == "hi"
        assert [r["step_id"] for r in body["results"]] == ["A"]
        assert body["plan"]["steps"][0]["tool"] == "echo"

    def test_validation_error(self, client):
        res = client.post("/agent/tasks", json={"prompt": ""})
        assert res.status_code == 400
        assert res.get_json()["detail"][0]["loc"] == ["prompt"]

    def test_missing_body(self, client):
        assert client.post("/agent/tasks").status_code == 400

    def test_rejected_confirmation(self, client, replies):
        replies[:] = [plan_reply(GATED)]
        body = _run(client, confirmations={"step_2": False}).get_json()
        assert body["state"] == "complete"
        assert body["success"] is False
        assert [r["status"] for r in body["results"]] == ["succeeded", "skipped"]

    def test_auto_confirm(self, client, replies):
        replies[:] = [plan_reply(GATED)]
        body = _run(client, auto_confirm=True).get_json()
        assert body["success"] is True
        assert [r["status"] for r in body["results"]] == ["succeeded", "succeeded"]

    def test_unconfirmed_points_are_rejected_by_default(self, client, replies):
        replies[:] = [plan_reply(GATED)]
        body = _run(client).get_json()
        assert body["results"][1]["error"] == "Rejected at confirmation point"


class TestStoredTasks:
    def test_get_list_history_checkpoints_delete(self, client):
        task_id = _run(client).get_json()["task_id"]

        task = client.get(f"/agent/tasks/{task_id}").get_json()
        assert task["status"] == "completed"
        assert task["description"] == "Do it"

        listed = client.get("/agent/tasks?status=completed&limit=10").get_json()
        assert [t["id"] for t in listed] == [task_id]
        assert client.get("/agent/tasks?status=failed").get_json() == []

        history = client.get(f"/agent/tasks/{task_id}/history").get_json()
        assert [t["trigger"] for t in history["transitions"]] == ["start", "plan_ready", "complete"]

        checkpoints = client.get(f"/agent/tasks/{task_id}/checkpoints").get_json()
        assert len(checkpoints) >= 1
        assert checkpoints[0]["task_id"] == task_id

        assert client.delete(f"/agent/tasks/{task_id}").get_json() == {"deleted": task_id}
        assert client.get(f"/agent/tasks/{task_id}").status_code == 404
        assert client.delete(f"/agent/tasks/{task_id}").status_code == 404

    def test_missing_task(self, client):
        assert client.get("/agent/tasks/nope").status_code == 404
        assert client.get("/agent/tasks/nope/history").status_code == 404
        assert client.get("/agent/tasks/nope/checkpoints").get_json() == []
        assert client.post("/agent/tasks/nope/resume", json={}).status_code == 404

    def test_bad_list_query(self, client):
        assert client.get("/agent/tasks?limit=0").status_code == 400
        assert client.get("/agent/tasks?status=sleeping").status_code == 400

    def test_resume_completed_task_conflicts(self, client):
        task_id = _run(client).get_json()["task_id"]
        res = client.post(f"/agent/tasks/{task_id}/resume", json={})
        assert res.status_code == 409
        assert "already completed" in res.get_json()["detail"]

    def test_stats(self, client):
        _run(client)
        _run(client)
        stats = client.get("/agent/stats").get_json()
        assert stats["total_tasks"] == 2
        assert stats["tasks_by_status"] == {"completed": 2}
