"""Tests for the HTTP and WebSocket transport.

Uses FastAPI's TestClient as a context manager so the lifespan runs and
every simulation is stopped at shutdown.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from citysim.config import Settings
from citysim.main import create_app
from citysim.services.connection_manager import ConnectionManager
from citysim.store.simulation_registry import SimulationRegistry


@pytest.fixture
def client(registry: SimulationRegistry):
    app = create_app(registry=registry, manager=ConnectionManager())
    with TestClient(app) as test_client:
        yield test_client


def _start(client: TestClient, city: str = "york", seconds: float = 10) -> str:
    resp = client.post("/api/simulations/start", params={"city_id": city, "seconds_per_hour": seconds})
    assert resp.status_code == 200, resp.text
    return resp.json()["simulation_id"]


class TestDiscovery:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["active_simulations"] == 0
        assert "york" in body["available_cities"]

    def test_debug_setting_reaches_app(self, registry: SimulationRegistry) -> None:
        app = create_app(registry=registry, manager=ConnectionManager(), cfg=Settings(debug=True))
        assert app.debug is True
        assert create_app(registry=registry, manager=ConnectionManager(), cfg=Settings(debug=False)).debug is False

    def test_cities(self, client: TestClient) -> None:
        body = client.get("/api/cities").json()
        assert body["count"] == 4
        assert {c["city_id"] for c in body["cities"]} == {"edinburgh", "york", "hull", "manchester"}


class TestControlSurface:
    def test_start_and_read(self, client: TestClient) -> None:
        sim_id = _start(client)

        data = client.get(f"/api/simulations/{sim_id}/data")
        assert data.status_code == 200
        snapshot = data.json()["data"]
        assert snapshot["hour_counter"] == 1
        assert snapshot["city_id"] == "york"
        assert {"weather", "events", "traffic"} <= snapshot.keys()

        status = client.get(f"/api/simulations/{sim_id}/status").json()
        assert status["state"] == "running"
        assert status["has_ready_data"] is True

        listing = client.get("/api/simulations").json()
        assert listing["count"] == 1

    def test_advance_serves_current_hour(self, client: TestClient) -> None:
        sim_id = _start(client)
        first = client.get(f"/api/simulations/{sim_id}/advance")
        assert first.status_code == 200
        assert first.json()["data"]["hour_counter"] == 1

    def test_stop(self, client: TestClient) -> None:
        sim_id = _start(client)
        resp = client.post(f"/api/simulations/{sim_id}/stop")
        assert resp.status_code == 200
        assert resp.json()["total_hours_simulated"] >= 1
        assert client.get(f"/api/simulations/{sim_id}/data").status_code == 404

    def test_time_compression(self, client: TestClient) -> None:
        sim_id = _start(client)
        resp = client.post(
            f"/api/simulations/{sim_id}/time-compression", params={"seconds_per_hour": 30}
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "simulation_id": sim_id,
            "old_seconds_per_hour": 10,
            "new_seconds_per_hour": 30,
        }


class TestErrorMapping:
    def test_unknown_city_is_404(self, client: TestClient) -> None:
        resp = client.post("/api/simulations/start", params={"city_id": "atlantis"})
        assert resp.status_code == 404
        assert "york" in resp.json()["detail"]

    def test_unknown_simulation_is_404(self, client: TestClient) -> None:
        assert client.get("/api/simulations/sim_missing/data").status_code == 404
        assert client.get("/api/simulations/sim_missing/advance").status_code == 404
        assert client.post("/api/simulations/sim_missing/stop").status_code == 404

    def test_missing_city_data_is_503(self, client: TestClient) -> None:
        resp = client.post("/api/simulations/start", params={"city_id": "edinburgh"})
        assert resp.status_code == 503

    @pytest.mark.parametrize("seconds", [0, 0.5, 5000])
    def test_invalid_pacing_is_422(self, client: TestClient, seconds: float) -> None:
        resp = client.post("/api/simulations/start", params={"city_id": "york", "seconds_per_hour": seconds})
        assert resp.status_code == 422

    def test_invalid_time_compression_is_422(self, client: TestClient) -> None:
        sim_id = _start(client)
        resp = client.post(
            f"/api/simulations/{sim_id}/time-compression", params={"seconds_per_hour": -1}
        )
        assert resp.status_code == 422


class TestWebSocket:
    def test_ping_pong(self, client: TestClient) -> None:
        with client.websocket_connect("/ws/simulations") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
