"""
Shared test fixtures for Victron gateway tests.

Provides environment isolation for GatewaySettings tests and an in-memory
Modbus transport that answers from a ``(unit_id, address) -> words`` table,
so discovery, acquisition and the service can be exercised without a bus.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
from victron_gateway.src.exceptions import (
    ConnectError,
    ConnectionClosedError,
    GatewayPathUnavailableError,
    TransportError,
)

# All GatewaySettings environment variable names, used for cleanup.
_ALL_GATEWAY_ENV_VARS = (
    "VICTRON_HOST",
    "VICTRON_PORT",
    "MODBUS_TIMEOUT_S",
    "POLL_INTERVAL_S",
    "DEBUG",
    "START_IN_SIMULATION",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_gateway_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all gateway env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# In-memory transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Stand-in for ModbusTransport backed by a register table.

    A Unit ID that appears nowhere in *registers* answers every read with a
    gateway-path rejection; an unknown address on a configured Unit ID fails
    with a plain TransportError (illegal data address).

    Args:
        registers: ``(unit_id, address) -> words`` returned for a read.
        fail_connect: connect() raises ConnectError when True.
    """

    def __init__(
        self,
        registers: dict[tuple[int, int], list[int]] | None = None,
        *,
        fail_connect: bool = False,
        host: str = "192.168.1.50",
        port: int = 502,
        timeout_s: float = 10.0,
    ) -> None:
        self.registers = dict(registers or {})
        self.fail_connect = fail_connect
        self.host = host
        self.port = port
        self.timeout_s = timeout_s
        self.target = 100
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.reads: list[tuple[int, int, int]] = []
        self.failures: dict[tuple[int, int], TransportError] = {}

    @property
    def unit_ids(self) -> set[int]:
        return {unit_id for unit_id, _ in self.registers}

    def reconfigure(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        timeout_s: float | None = None,
    ) -> None:
        if host is not None:
            self.host = host
        if port is not None:
            self.port = port
        if timeout_s is not None:
            self.timeout_s = timeout_s

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise ConnectError(self.host, self.port, "connection refused")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def set_target(self, unit_id: int) -> None:
        self.target = unit_id

    async def read_holding_registers(self, address: int, count: int = 1) -> list[int]:
        unit_id = self.target
        self.reads.append((unit_id, address, count))
        if not self.connected:
            raise ConnectionClosedError("Port is closed", unit_id=unit_id, address=address)
        failure = self.failures.get((unit_id, address))
        if failure is not None:
            raise failure
        if unit_id not in self.unit_ids:
            raise GatewayPathUnavailableError(
                f"Gateway path unavailable for unit {unit_id}",
                unit_id=unit_id,
                address=address,
            )
        words = self.registers.get((unit_id, address))
        if words is None:
            raise TransportError(
                f"Illegal data address {address} (unit {unit_id})",
                unit_id=unit_id,
                address=address,
            )
        return list(words)


@pytest.fixture()
def make_transport() -> Callable[..., FakeTransport]:
    """Factory for in-memory transports.

    Usage::

        transport = make_transport({(100, 843): [8550]})
    """
    return FakeTransport
