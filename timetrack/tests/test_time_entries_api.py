from fastapi.testclient import TestClient

from timetrack.core.errors import Busy, StorageFailure
from timetrack.deps.time_engine import get_time_engine
from timetrack.main import app


def _start(client, task_id: str) -> dict:
    r = client.post("/time_entries/start", json={"task_id": task_id})
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_start_returns_running_entry(client, task_factory):
    task = task_factory()

    body = _start(client, task.id)

    assert body["task_id"] == task.id
    assert body["is_paused"] is False
    assert body["end_time"] is None
    assert body["paused_at"] is None
    assert body["last_resumed_at"] is not None
    assert body["total_paused_duration"] == 0
    assert body["current_elapsed_seconds"] >= 0


def test_start_with_unknown_task_is_bad_request(client):
    r = client.post("/time_entries/start", json={"task_id": "no-such-task"})
    assert r.status_code == 400
    assert "does not exist" in r.json()["detail"]


def test_start_requires_task_id(client):
    r = client.post("/time_entries/start", json={})
    assert r.status_code == 422


def test_pause_resume_stop_flow(client, task_factory):
    entry_id = _start(client, task_factory().id)["id"]

    r = client.put(f"/time_entries/{entry_id}/pause")
    assert r.status_code == 200, r.text
    paused = r.json()
    assert paused["is_paused"] is True
    assert paused["paused_at"] is not None
    assert paused["last_resumed_at"] is None

    r = client.put(f"/time_entries/{entry_id}/pause")
    assert r.status_code == 200
    assert r.json()["paused_at"] == paused["paused_at"]

    r = client.put(f"/time_entries/{entry_id}/resume")
    assert r.status_code == 200
    resumed = r.json()
    assert resumed["is_paused"] is False
    assert resumed["paused_at"] is None

    r = client.put(f"/time_entries/{entry_id}/stop")
    assert r.status_code == 200
    stopped = r.json()
    assert stopped["end_time"] is not None
    assert stopped["duration"] >= 0
    assert stopped["current_elapsed_seconds"] is None


def test_transitions_on_stopped_entry(client, task_factory):
    entry_id = _start(client, task_factory().id)["id"]
    assert client.put(f"/time_entries/{entry_id}/stop").status_code == 200

    assert client.put(f"/time_entries/{entry_id}/pause").status_code == 400
    assert client.put(f"/time_entries/{entry_id}/resume").status_code == 400

    r = client.put(f"/time_entries/{entry_id}/stop")
    assert r.status_code == 404
    assert "already stopped" in r.json()["detail"]


def test_missing_entry_is_not_found(client):
    for path in ("pause", "resume", "stop"):
        assert client.put(f"/time_entries/missing/{path}").status_code == 404
    assert client.get("/time_entries/missing").status_code == 404


def test_get_and_list(client, task_factory):
    task = task_factory()
    first = _start(client, task.id)["id"]
    client.put(f"/time_entries/{first}/stop")
    second = _start(client, task.id)["id"]

    r = client.get(f"/time_entries/{second}")
    assert r.status_code == 200
    assert r.json()["current_elapsed_seconds"] is not None

    r = client.get("/time_entries", params={"task_id": task.id})
    assert r.status_code == 200
    assert [e["id"] for e in r.json()] == [second, first]

    r = client.get("/time_entries", params={"active": "true"})
    assert [e["id"] for e in r.json()] == [second]

    r = client.get("/time_entries", params={"limit": 0})
    assert r.status_code == 422


class _Unavailable:
    def __init__(self, exc):
        self.exc = exc

    def pause(self, entry_id):
        raise self.exc


def test_busy_and_storage_errors_map_to_status_codes():
    try:
        app.dependency_overrides[get_time_engine] = lambda: _Unavailable(Busy("locked"))
        with TestClient(app) as c:
            assert c.put("/time_entries/x/pause").status_code == 409

        app.dependency_overrides[get_time_engine] = lambda: _Unavailable(StorageFailure("down"))
        with TestClient(app) as c:
            r = c.put("/time_entries/x/pause")
            assert r.status_code == 503
            assert r.json()["detail"] == "down"
    finally:
        app.dependency_overrides.clear()


def test_unexpected_errors_become_500():
    try:
        app.dependency_overrides[get_time_engine] = lambda: _Unavailable(RuntimeError("boom"))
        with TestClient(app) as c:
            r = c.put("/time_entries/x/pause")
            assert r.status_code == 500
            assert r.json() == {"detail": "Internal Server Error"}
    finally:
        app.dependency_overrides.clear()
