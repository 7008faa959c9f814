"""
Unit tests for the gateway daemon entrypoint.

Tests verify:
- run_service() initialises the service and shuts it down on signal.
- The health file follows published snapshots.
- A health write failure does not stop the daemon.
- Startup logs a config summary.
- The JSON log formatter emits one JSON object per record.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from victron_gateway.src.config import GatewayConfig
from victron_gateway.src.health import HealthWriter
from victron_gateway.src.main import configure_logging, log_config_summary, run_service
from victron_gateway.src.service import VictronGatewayService


def _mock_service() -> MagicMock:
    service = MagicMock()
    service.initialize = AsyncMock(return_value=True)
    service.shutdown = AsyncMock()
    service.get_api_status.return_value = "connected"
    return service


class TestRunService:
    """run_service() lifecycle."""

    @pytest.mark.asyncio
    async def test_initialize_then_shutdown_on_event(self) -> None:
        service = _mock_service()
        shutdown_event = asyncio.Event()
        shutdown_event.set()

        await run_service(service=service, shutdown_event=shutdown_event)

        service.initialize.assert_awaited_once()
        service.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_runs_when_initialize_fails(self) -> None:
        service = _mock_service()
        service.initialize = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await run_service(service=service, shutdown_event=asyncio.Event())

        service.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_file_follows_snapshots(
        self, make_transport: Callable[..., Any], tmp_path: Path
    ) -> None:
        """A real service in simulation mode drives the health file."""
        transport = make_transport(fail_connect=True)
        service = VictronGatewayService(
            GatewayConfig(host="192.168.1.50"),
            transport=transport,
        )
        health_path = tmp_path / "health.json"
        shutdown_event = asyncio.Event()

        runner = asyncio.create_task(
            run_service(
                service=service,
                shutdown_event=shutdown_event,
                health=HealthWriter(health_path),
            )
        )
        data: dict = {}
        for _ in range(100):
            if health_path.exists():
                data = json.loads(health_path.read_text())
                if data["api_status"] == "simulation":
                    break
            await asyncio.sleep(0.01)
        shutdown_event.set()
        await asyncio.wait_for(runner, timeout=5.0)

        assert data["api_status"] == "simulation"
        assert data["working_register_count"] == 0

    @pytest.mark.asyncio
    async def test_health_write_error_does_not_crash(
        self, make_transport: Callable[..., Any]
    ) -> None:
        transport = make_transport(fail_connect=True)
        service = VictronGatewayService(
            GatewayConfig(host="192.168.1.50"),
            transport=transport,
        )
        health = MagicMock()
        health.record_snapshot.side_effect = OSError("read-only filesystem")
        shutdown_event = asyncio.Event()

        runner = asyncio.create_task(
            run_service(service=service, shutdown_event=shutdown_event, health=health)
        )
        for _ in range(100):
            if health.record_snapshot.called:
                break
            await asyncio.sleep(0.01)
        shutdown_event.set()
        await asyncio.wait_for(runner, timeout=5.0)

        assert health.record_snapshot.called


class TestLogging:
    def test_config_summary_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        settings = MagicMock(
            victron_host="192.168.1.50",
            victron_port=502,
            modbus_timeout_s=10.0,
            poll_interval_s=5.0,
            debug=False,
            start_in_simulation=False,
            health_path="/data/health.json",
        )
        with caplog.at_level(logging.INFO, logger="victron_gateway.src.main"):
            log_config_summary(settings)

        assert "victron_host=192.168.1.50" in caplog.text
        assert "poll_interval_s=5.0" in caplog.text

    def test_json_formatter(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging()
            handler = root.handlers[0]
            record = logging.LogRecord(
                "victron_gateway.test", logging.INFO, __file__, 1, "hello %s", ("x",), None
            )
            entry = json.loads(handler.format(record))
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        assert entry["level"] == "INFO"
        assert entry["logger"] == "victron_gateway.test"
        assert entry["msg"] == "hello x"
        assert "ts" in entry
