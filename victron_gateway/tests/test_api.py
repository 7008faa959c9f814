"""
Tests for the /api/victron REST surface.

Route tests use a mocked service without running the lifespan; the
lifespan tests check that startup initialises and shutdown stops the
service, including one run against a real service on the in-memory
transport.

The zero-argument factory is checked against environment settings.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-015)
- 2026-10-19: create_app_from_env() (STORY-016)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError
from victron_gateway.src.api import create_app, create_app_from_env
from victron_gateway.src.config import GatewayConfig
from victron_gateway.src.diagnostics import Connectivity, DiagnosticsReport, ProbeResult
from victron_gateway.src.models import (
    ACLoadsStatus,
    ApiStatus,
    BatteryStatus,
    DCSystemStatus,
    GridStatus,
    PVChargerStatus,
    SystemOverview,
)
from victron_gateway.src.service import VictronGatewayService

BASE = "/api/victron"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_service() -> MagicMock:
    service = MagicMock()
    service.initialize = AsyncMock(return_value=True)
    service.shutdown = AsyncMock()
    service.connected = True
    service.simulation_enabled = False
    service.get_api_status.return_value = ApiStatus.CONNECTED
    service.get_battery_status.return_value = BatteryStatus(
        soc=85.5, voltage=12.8, current=-3.0, power=-38.0, time_to_go="8:33"
    )
    service.get_pv_charger.return_value = PVChargerStatus(power=320.0, daily_yield=1.25)
    service.get_ac_loads.return_value = ACLoadsStatus(power=120.0)
    service.get_dc_system.return_value = DCSystemStatus(power=54.0)
    service.get_grid.return_value = GridStatus(power=400.0, l1_power=400.0, is_connected=True)
    service.get_system_overview.return_value = SystemOverview(state="Passthru")
    service.get_all_data.return_value = {"apiStatus": "connected", "refreshInterval": 5.0}
    service.get_configuration.return_value = {"host": "192.168.1.50", "pollInterval": 5.0}
    service.toggle_simulation.side_effect = lambda enabled: enabled
    return service


@pytest.fixture()
def service() -> MagicMock:
    return _mock_service()


@pytest.fixture()
def client(service: MagicMock) -> TestClient:
    """TestClient without lifespan: routes only."""
    return TestClient(create_app(service))


# ===========================================================================
# Snapshot routes
# ===========================================================================


class TestSnapshotRoutes:
    """GET routes wrap camelCase payloads in the success envelope."""

    def test_battery(self, client: TestClient) -> None:
        resp = client.get(f"{BASE}/battery")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["data"]["soc"] == 85.5
        assert body["data"]["timeToGo"] == "8:33"

    def test_pv(self, client: TestClient) -> None:
        data = client.get(f"{BASE}/pv").json()["data"]
        assert data["dailyYield"] == 1.25

    def test_grid(self, client: TestClient) -> None:
        data = client.get(f"{BASE}/grid").json()["data"]
        assert data["l1Power"] == 400.0
        assert data["isConnected"] is True

    def test_ac_loads_and_dc_system(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/ac-loads").json()["data"]["lines"] == ["L1"]
        assert client.get(f"{BASE}/dc-system").json()["data"]["source"] == "battery"

    def test_system(self, client: TestClient) -> None:
        data = client.get(f"{BASE}/system").json()["data"]
        assert data["state"] == "Passthru"
        assert data["acLimit"] == 50.0

    def test_all(self, client: TestClient) -> None:
        body = client.get(f"{BASE}/all").json()
        assert body == {
            "status": "success",
            "data": {"apiStatus": "connected", "refreshInterval": 5.0},
        }

    def test_status(self, client: TestClient) -> None:
        data = client.get(f"{BASE}/status").json()["data"]
        assert data == {"apiStatus": "connected", "connected": True, "simulationEnabled": False}


# ===========================================================================
# Control routes
# ===========================================================================


class TestControlRoutes:
    def test_get_config(self, client: TestClient) -> None:
        data = client.get(f"{BASE}/config").json()["data"]
        assert data["host"] == "192.168.1.50"

    def test_put_config(self, client: TestClient, service: MagicMock) -> None:
        resp = client.put(f"{BASE}/config", json={"pollInterval": 10})

        assert resp.status_code == 200
        service.update_configuration.assert_called_once_with({"pollInterval": 10})

    def test_put_config_invalid(self, client: TestClient, service: MagicMock) -> None:
        """A validation failure is reported as 422."""
        try:
            GatewayConfig(host="h", port=0)
        except ValidationError as exc:
            service.update_configuration.side_effect = exc

        resp = client.put(f"{BASE}/config", json={"port": 0})

        assert resp.status_code == 422

    def test_post_simulation(self, client: TestClient, service: MagicMock) -> None:
        resp = client.post(f"{BASE}/simulation", json={"enabled": True})

        assert resp.status_code == 200
        assert resp.json()["data"] == {"simulationEnabled": True}
        service.toggle_simulation.assert_called_once_with(True)

    def test_post_simulation_requires_flag(self, client: TestClient) -> None:
        assert client.post(f"{BASE}/simulation", json={}).status_code == 422

    def test_diagnostics(self, client: TestClient, service: MagicMock) -> None:
        service.run_diagnostics = AsyncMock(
            return_value=DiagnosticsReport(
                connectivity=Connectivity(
                    host="192.168.1.50",
                    port=502,
                    ping_success=True,
                    modbus_connect_success=True,
                ),
                unit_ids={100: ProbeResult(works=True, value=1200)},
                registers={"BATTERY_SOC": ProbeResult(works=True, value=8550)},
                tested_unit_id=100,
                summary="SUCCESS",
            )
        )

        data = client.get(f"{BASE}/diagnostics").json()["data"]

        assert data["workingUnitIds"] == [100]
        assert data["workingRegisters"] == ["BATTERY_SOC"]
        assert data["connectivity"]["ping_success"] is True


# ===========================================================================
# Lifespan
# ===========================================================================


class TestLifespan:
    def test_startup_and_shutdown(self, service: MagicMock) -> None:
        with TestClient(create_app(service)):
            service.initialize.assert_awaited_once()
        service.shutdown.assert_awaited_once()

    def test_real_service(self, make_transport: Callable[..., Any]) -> None:
        """Values read at startup are served by the routes."""
        transport = make_transport({(100, 800): [1200], (100, 843): [8550]})
        real = VictronGatewayService(
            GatewayConfig(host="192.168.1.50"),
            transport=transport,
        )

        with TestClient(create_app(real)) as client:
            battery = client.get(f"{BASE}/battery").json()["data"]
            status = client.get(f"{BASE}/status").json()["data"]

        assert battery["soc"] == pytest.approx(85.5)
        assert status["apiStatus"] == "connected"
        assert transport.connected is False


class TestCreateAppFromEnv:
    """The zero-argument factory builds its service from the environment."""

    def test_service_built_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VICTRON_HOST", "10.0.0.7")
        monkeypatch.setenv("POLL_INTERVAL_S", "9")

        app = create_app_from_env()

        service = app.state.service
        assert isinstance(service, VictronGatewayService)
        assert service.config.host == "10.0.0.7"
        assert service.config.poll_interval == 9.0
        assert service.simulation_enabled is False

    def test_start_in_simulation_served(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Simulation from the environment never touches the bus."""
        monkeypatch.setenv("VICTRON_HOST", "10.0.0.7")
        monkeypatch.setenv("START_IN_SIMULATION", "true")

        with TestClient(create_app_from_env()) as client:
            status = client.get(f"{BASE}/status").json()["data"]

        assert status == {
            "apiStatus": "simulation",
            "connected": False,
            "simulationEnabled": True,
        }

    def test_missing_host_rejected(self) -> None:
        with pytest.raises(ValidationError):
            create_app_from_env()
