"""Tests for the Flask status API."""

from datetime import datetime, timedelta, timezone

import pytest

from minutes_bot.server.app import create_app
from minutes_bot.server.scheduler import WorkflowScheduler
from minutes_bot.server.task_manager import TaskManager


@pytest.fixture
def scheduler(tmp_path):
    scheduler = WorkflowScheduler(TaskManager(str(tmp_path / "tasks")))
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def client(scheduler):
    app = create_app(scheduler.task_manager, scheduler)
    app.config["TESTING"] = True
    return app.test_client()


def later(hours=1):
    return datetime.now(timezone.utc) + timedelta(hours=hours)


class TestHealth:
    def test_health(self, client, scheduler):
        scheduler.schedule(lambda: True, later(), name="meeting-123456789")

        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["pending_tasks"] == 1
        assert data["running_tasks"] == 0
        assert data["listener_running"] is False


class TestTasks:
    def test_list_tasks(self, client, scheduler):
        second = scheduler.schedule(lambda: True, later(2), name="meeting-2")
        first = scheduler.schedule(lambda: True, later(1), name="meeting-1")

        data = client.get("/tasks").get_json()

        assert data["total"] == 2
        assert [t["id"] for t in data["tasks"]] == [first.task_id, second.task_id]
        assert data["tasks"][0]["state"] == "pending"
        assert "workflow" not in data["tasks"][0]

    def test_filter_and_paginate(self, client, scheduler):
        handles = [scheduler.schedule(lambda: True, later(i + 1)) for i in range(3)]
        handles[0].cancel()

        pending = client.get("/tasks?status=pending").get_json()
        page = client.get("/tasks?limit=1&offset=1").get_json()

        assert [t["id"] for t in pending["tasks"]] == [handles[1].task_id, handles[2].task_id]
        assert [t["id"] for t in page["tasks"]] == [handles[1].task_id]

    @pytest.mark.parametrize("query", ["status=bogus", "limit=abc", "offset=x"])
    def test_bad_query(self, client, query):
        assert client.get(f"/tasks?{query}").status_code == 400

    def test_get_task(self, client, scheduler):
        handle = scheduler.schedule(lambda: True, later(), name="meeting-123456789")

        data = client.get(f"/tasks/{handle.task_id}").get_json()

        assert data["id"] == handle.task_id
        assert data["name"] == "meeting-123456789"
        assert data["stage"] == "scheduled"
        assert data["error"] is None

    def test_unknown_task(self, client):
        assert client.get("/tasks/missing").status_code == 404
        assert client.delete("/tasks/missing").status_code == 404

    def test_cancel_task(self, client, scheduler):
        handle = scheduler.schedule(lambda: True, later())

        response = client.delete(f"/tasks/{handle.task_id}")

        assert response.status_code == 200
        assert handle.cancelled()
        assert client.get(f"/tasks/{handle.task_id}").get_json()["state"] == "cancelled"
        assert client.delete(f"/tasks/{handle.task_id}").status_code == 409
