"""Tests for the HTTP API."""

import time
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from avorch.jobs.orchestrator import OperationOrchestrator
from avorch.main import create_app

from conftest import FakeEngine, make_asset


def _poll(client: TestClient, operation_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/operations/{operation_id}").json()
        if body["state"] in ("completed", "failed", "cancelled"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"operation {operation_id} did not finish")


@pytest.fixture
def client(orchestrator: OperationOrchestrator):
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_temp_dir(self, client: TestClient, tmp_path: Path) -> None:
        response = client.get("/api/v1/temp-dir")
        assert response.json()["temp_dir"] == str((tmp_path / "temp").resolve())


class TestOperations:
    def test_trim_lifecycle(self, client: TestClient, media_dir: Path, tmp_path: Path) -> None:
        response = client.post(
            "/api/v1/operations/trim",
            json={"input_path": str(media_dir / "a.mp4"), "start_time": 0, "end_time": 2, "segment_id": "s1"},
        )
        assert response.status_code == 202
        operation_id = response.json()["operation_id"]
        assert response.json()["type"] == "trim"

        body = _poll(client, operation_id)
        assert body["state"] == "completed"
        assert body["progress"] == 100.0
        assert body["result"]["success"] is True
        assert body["result"]["output_path"] == str(tmp_path / "out" / "segment_s1.mp4")

        events = client.get(f"/api/v1/operations/{operation_id}/events").json()
        assert events[0]["stage"] == "started"
        assert events[-1]["stage"] == "completed"

        listing = client.get("/api/v1/operations").json()
        assert [item["operation_id"] for item in listing] == [operation_id]

    def test_merge_reports_children(self, client: TestClient, media_dir: Path) -> None:
        segments = [
            {"segment_id": "s1", "source_path": str(media_dir / "a.mp4"), "start_time": 0, "end_time": 2},
            {"segment_id": "s2", "source_path": str(media_dir / "b.mp4"), "start_time": 0, "end_time": 2},
        ]
        response = client.post("/api/v1/operations/merge", json={"segments": segments})
        operation_id = response.json()["operation_id"]

        body = _poll(client, operation_id)
        assert body["state"] == "completed"
        assert len(body["children"]) == 2
        assert body["result"]["segment_count"] == 2
        progress = client.get(f"/api/v1/operations/{operation_id}/progress").json()
        assert progress["is_complete"] is True
        assert progress["tracked"] == 2

    def test_validation_error_is_422(self, client: TestClient, media_dir: Path) -> None:
        response = client.post(
            "/api/v1/operations/trim",
            json={"input_path": str(media_dir / "a.mp4"), "start_time": 4, "end_time": 1},
        )
        assert response.status_code == 422
        assert "ValidationError" in response.json()["detail"]

    def test_composition_error_is_422(self, client: TestClient, media_dir: Path) -> None:
        segments = [
            {"source_path": str(media_dir / "a.mp4"), "start_time": 0, "end_time": 2},
            {"source_path": str(media_dir / "b.mp4"), "start_time": 0, "end_time": 2},
        ]
        response = client.post(
            "/api/v1/operations/merge",
            json={"segments": segments, "transitions": [{"duration": 5}]},
        )
        assert response.status_code == 422
        assert "CompositionError" in response.json()["detail"]

    def test_unknown_type_is_422(self, client: TestClient) -> None:
        assert client.post("/api/v1/operations/transcode", json={}).status_code == 422

    def test_unknown_operation_is_404(self, client: TestClient) -> None:
        assert client.get("/api/v1/operations/missing").status_code == 404
        assert client.get("/api/v1/operations/missing/events").status_code == 404
        assert client.post("/api/v1/operations/missing/cancel").status_code == 404

    def test_failure_reported(self, client: TestClient, engine: FakeEngine, media_dir: Path) -> None:
        engine.fail_when("a.mp4", stderr="Invalid data found")
        response = client.post("/api/v1/operations/remove-audio", json={"input_path": str(media_dir / "a.mp4")})
        body = _poll(client, response.json()["operation_id"])
        assert body["state"] == "failed"
        assert body["error_kind"] == "EngineRuntimeError"
        assert "Invalid data found" in body["error"]

    def test_cancel(self, client: TestClient, engine: FakeEngine, media_dir: Path) -> None:
        engine.hang_when("a.mp4")
        response = client.post("/api/v1/operations/remove-audio", json={"input_path": str(media_dir / "a.mp4")})
        operation_id = response.json()["operation_id"]

        deadline = time.monotonic() + 5
        while not engine.calls and time.monotonic() < deadline:
            time.sleep(0.02)

        response = client.post(f"/api/v1/operations/{operation_id}/cancel")
        assert response.status_code == 200
        assert response.json() == {"operation_id": operation_id, "cancelled": True, "state": "cancelled"}
        assert client.post(f"/api/v1/operations/{operation_id}/cancel").json()["cancelled"] is False


class TestMediaInfo:
    def test_media_info(self, client: TestClient, media_dir: Path) -> None:
        path = media_dir / "a.mp4"
        with patch(
            "avorch.services.probe.MediaProbe.probe",
            new_callable=AsyncMock,
            return_value=make_asset(path, duration=12.5),
        ):
            response = client.get("/api/v1/media/info", params={"path": str(path)})
        assert response.status_code == 200
        body = response.json()
        assert body["duration"] == 12.5
        assert body["width"] == 1920
        assert body["audio_codec"] == "aac"

    def test_missing_file(self, client: TestClient, tmp_path: Path) -> None:
        response = client.get("/api/v1/media/info", params={"path": str(tmp_path / "none.mp4")})
        assert response.status_code == 422
