"""
Tests for the REST API, WebSocket events and compact status endpoint.
"""

import pytest
from fastapi.testclient import TestClient

from analytics.aggregator import CountAggregator
from models.config import Config
from models.count_event import Location
from models.stream import DeviceDescriptor
from pipeline.canvas import Canvas
from web.app import create_app
from web.events import EventHub
from web.routes.api import _compute_warnings
from web.state import state

START = "2024-05-01T00:00:00+00:00"
END = "2024-05-02T00:00:00+00:00"


class FakeSession:
    def __init__(self):
        self.canvas = Canvas(64, 48)
        self.aggregator = CountAggregator(Location("lobby", "Lobby", 20))
        self.pump = None
        self.calls = []
        self.low_power = False
        self.paused = False

    def status(self):
        return {
            "state": "idle",
            "streaming": False,
            "paused": self.paused,
            "tier": "standard",
            "low_power": self.low_power,
            "count": 0,
            "model": {"ready": False, "loading": False, "name": None, "variant": None},
            "camera": None,
            "pump": None,
            "last_error": None,
        }

    async def start(self):
        self.calls.append("start")

    async def stop(self):
        self.calls.append("stop")

    async def retry_camera(self):
        self.calls.append("retry_camera")

    async def reload_model(self):
        self.calls.append("reload_model")

    async def set_low_power(self, enabled):
        self.low_power = enabled

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    async def list_cameras(self):
        return [DeviceDescriptor(0, "USB Camera")]


@pytest.fixture
def client(memory_db):
    state.reset()
    state.set_database(memory_db)
    state.set_config(Config())
    state.set_events(EventHub())
    with TestClient(create_app(use_lifespan=False)) as c:
        yield c
    state.reset()


@pytest.fixture
def session():
    fake = FakeSession()
    state.set_session(fake)
    return fake


class TestLocations:
    def test_list(self, client):
        ids = [loc["id"] for loc in client.get("/api/locations").json()]
        assert "lobby" in ids

    def test_get(self, client):
        resp = client.get("/api/locations/lobby")
        assert resp.status_code == 200
        assert resp.json()["capacity"] == 20

    def test_unknown_location_is_404(self, client):
        resp = client.get("/api/locations/nowhere")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Location not found"}


class TestCounts:
    def test_add_and_list(self, client):
        resp = client.post("/api/counts/lobby", json={"count": 4, "status": "normal", "timestamp": START})
        assert resp.status_code == 201
        assert resp.json()["count"] == 4

        rows = client.get("/api/counts/lobby").json()
        assert [r["count"] for r in rows] == [4]

    def test_missing_fields(self, client):
        resp = client.post("/api/counts/lobby", json={"count": 4})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Count and status are required"}

    def test_negative_count_is_a_validation_error(self, client):
        resp = client.post("/api/counts/lobby", json={"count": -1, "status": "normal"})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_unknown_location(self, client):
        resp = client.post("/api/counts/nowhere", json={"count": 1, "status": "normal"})
        assert resp.status_code == 404

    def test_range_requires_dates(self, client):
        resp = client.get("/api/counts/lobby/range", params={"start": START})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Start and end dates are required"}

    def test_range(self, client):
        client.post("/api/counts/lobby", json={"count": 1, "status": "normal", "timestamp": START})
        client.post("/api/counts/lobby", json={"count": 2, "status": "normal", "timestamp": "2024-06-01T00:00:00+00:00"})
        rows = client.get("/api/counts/lobby/range", params={"start": START, "end": END}).json()
        assert [r["count"] for r in rows] == [1]


class TestEntryExit:
    def test_add_and_list(self, client):
        resp = client.post(
            "/api/counts/lobby/entry-exit",
            json={"type": "entry", "count": 2, "current_occupancy": 2, "timestamp": START},
        )
        assert resp.status_code == 201
        rows = client.get("/api/counts/lobby/entry-exit").json()
        assert rows[0]["type"] == "entry"
        assert rows[0]["current_occupancy"] == 2

    def test_type_must_be_entry_or_exit(self, client):
        resp = client.post("/api/counts/lobby/entry-exit", json={"type": "leave", "current_occupancy": 1})
        assert resp.status_code == 400
        assert resp.json() == {"error": 'Type must be "entry" or "exit"'}

    def test_missing_fields(self, client):
        resp = client.post("/api/counts/lobby/entry-exit", json={"type": "entry"})
        assert resp.status_code == 400


class TestReports:
    @pytest.fixture(autouse=True)
    def rows(self, memory_db):
        memory_db.add_count("lobby", 2, "normal", None, "2024-05-01T09:00:00+00:00")
        memory_db.add_count("lobby", 6, "normal", None, "2024-05-01T09:30:00+00:00")

    def test_hourly(self, client):
        rows = client.get("/api/reports/lobby/hourly", params={"start": START, "end": END}).json()
        assert rows == [{"hour": "2024-05-01 09:00:00", "average_count": 4, "max_count": 6, "min_count": 2, "sample_count": 2}]

    def test_summary(self, client):
        report = client.get("/api/reports/lobby/summary", params={"start": START, "end": END}).json()
        assert report["summary"]["total_samples"] == 2

    def test_reports_require_dates(self, client):
        assert client.get("/api/reports/lobby/daily").status_code == 400

    def test_csv_download(self, client):
        resp = client.get("/api/reports/lobby/csv", params={"start": START, "end": END, "type": "counts"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.headers["content-disposition"] == f'attachment; filename="Lobby-counts-{START}-{END}.csv"'
        assert resp.text.splitlines()[0] == '"timestamp","count","status","message"'

    def test_csv_invalid_type(self, client):
        resp = client.get("/api/reports/lobby/csv", params={"start": START, "end": END, "type": "hourly"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid report type"}


class TestLiveControl:
    def test_unavailable_without_session(self, client):
        assert client.get("/api/live/status").status_code == 503

    def test_status(self, client, session):
        body = client.get("/api/live/status").json()
        assert body["tier"] == "standard"
        assert body["model"]["ready"] is False

    def test_commands_reach_the_session(self, client, session):
        for path in ("/api/live/start", "/api/live/camera/retry", "/api/live/model/reload", "/api/live/stop"):
            assert client.post(path).status_code == 200
        assert session.calls == ["start", "retry_camera", "reload_model", "stop"]

    def test_pause_resume(self, client, session):
        assert client.post("/api/live/pause").json()["paused"] is True
        assert client.post("/api/live/resume").json()["paused"] is False

    def test_low_power_toggle(self, client, session):
        assert client.post("/api/live/low-power", json={"enabled": True}).json()["low_power"] is True

    def test_cameras(self, client, session):
        assert client.get("/api/live/cameras").json() == [{"device_id": 0, "label": "USB Camera", "kind": "videoinput"}]

    def test_snapshot(self, client, session):
        resp = client.get("/api/live/snapshot.jpg")
        assert resp.headers["content-type"] == "image/jpeg"
        assert resp.content[:2] == b"\xff\xd8"


class TestStatus:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["camera_backend"] == "opencv"
        assert body["storage"]["rows"]["locations"] == 1
        assert body["live"] is None
        assert "uptime_seconds" in body

    def test_health_reports_live_session(self, client, session):
        live = client.get("/api/health").json()["live"]
        assert live == {"streaming": False, "model_ready": False, "model": None, "last_error": None}

    def test_compact_status_without_session(self, client):
        body = client.get("/api/status").json()
        assert body["running"] is False
        assert "camera_offline" in body["warnings"]

    def test_compact_status_with_session(self, client, session):
        body = client.get("/api/status").json()
        assert body["current_count"] == 0
        assert body["occupancy_status"] == "normal"
        assert body["tier"] == "standard"


class TestComputeWarnings:
    """Tests for warning computation logic."""

    def test_no_warnings_when_healthy(self):
        assert _compute_warnings(True, 0.5, 50.0, 45.0, None) == []

    def test_camera_stale_warning(self):
        warnings = _compute_warnings(True, 5.0, 50.0, 45.0, None)
        assert "camera_stale" in warnings
        assert "camera_offline" not in warnings

    def test_camera_offline_when_not_running(self):
        assert "camera_offline" in _compute_warnings(False, 0.5, 50.0, 45.0, None)

    def test_disk_low_threshold_exact(self):
        assert "disk_low" not in _compute_warnings(True, 0.5, 10.0, 45.0, None)
        assert "disk_low" in _compute_warnings(True, 0.5, 5.0, 45.0, None)

    def test_temp_high(self):
        assert "temp_high" in _compute_warnings(True, 0.5, 50.0, 85.0, None)

    def test_last_error_code_is_a_warning(self):
        warnings = _compute_warnings(True, 0.5, 50.0, 45.0, {"code": "DeviceBusy", "message": "busy"})
        assert warnings == ["DeviceBusy"]


class TestWebSocket:
    def test_count_events_are_pushed(self, client):
        with client.websocket_connect("/ws") as ws:
            client.post("/api/counts/lobby", json={"count": 3, "status": "normal"})
            message = ws.receive_json()
        assert message["event"] == "count_updated"
        assert message["data"]["count"] == 3

    def test_entry_exit_events_are_pushed(self, client):
        with client.websocket_connect("/ws") as ws:
            client.post("/api/counts/lobby/entry-exit", json={"type": "exit", "count": 1, "current_occupancy": 0})
            message = ws.receive_json()
        assert message["event"] == "entry_exit_recorded"
        assert message["data"]["type"] == "exit"
