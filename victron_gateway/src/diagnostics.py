"""
On-demand connectivity diagnostics for the Victron installation.

Runs a more exhaustive, strictly observational version of discovery for
troubleshooting:

1. ICMP reachability of the configured host (``ping -c 1``).
2. A fresh, disposable Modbus TCP session (never the service's live one).
3. The topology probe against every diagnostic Unit ID, recording results.
4. A fixed set of representative register reads on the first working Unit
   ID (100 when none worked).
5. A classification, worst first: host unreachable, bus unreachable, no
   working Unit ID, no working registers, operational.

The service's working Unit IDs and working register map are never touched.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-012)
- 2026-10-19: Diagnostic register addresses come from the catalog (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from victron_gateway.src.exceptions import ConnectError, TransportError
from victron_gateway.src.registers import (
    DIAGNOSTIC_UNIT_IDS,
    PRIMARY_PROFILE,
    PROBE_ADDRESS,
)
from victron_gateway.src.transport import DEFAULT_UNIT_ID, ModbusTransport

if TYPE_CHECKING:
    from victron_gateway.src.config import GatewayConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PING_TIMEOUT_S: int = 2

DIAGNOSTIC_REGISTER_NAMES: tuple[str, ...] = (
    "BATTERY_SOC",
    "BATTERY_VOLTAGE",
    "PV_POWER",
    "AC_CONSUMPTION",
    "GRID_POWER",
    "GRID_L1_POWER",
    "DC_SYSTEM_POWER",
    "DC_SYSTEM_POWER_ALT",
    "SYSTEM_STATE",
)

DIAGNOSTIC_REGISTERS: tuple[tuple[str, int], ...] = tuple(
    (name, PRIMARY_PROFILE.registers[name].address) for name in DIAGNOSTIC_REGISTER_NAMES
)
"""(name, address) pairs read with a single word each, taken from the catalog."""


# ---------------------------------------------------------------------------
# Report models
# ---------------------------------------------------------------------------


class DiagnosticsClassification(StrEnum):
    """Overall health, ordered worst first."""

    HOST_UNREACHABLE = "host_unreachable"
    BUS_UNREACHABLE = "bus_unreachable"
    NO_UNIT_ID = "no_unit_id"
    NO_REGISTERS = "no_registers"
    OPERATIONAL = "operational"


class ProbeResult(BaseModel):
    """Outcome of a single diagnostic read."""

    works: bool
    value: int | None = None
    error: str | None = None


class Connectivity(BaseModel):
    host: str
    port: int
    ping_success: bool = False
    modbus_connect_success: bool = False


class DiagnosticsReport(BaseModel):
    """Everything a diagnostics run observed."""

    connectivity: Connectivity
    unit_ids: dict[int, ProbeResult] = Field(default_factory=dict)
    registers: dict[str, ProbeResult] = Field(default_factory=dict)
    tested_unit_id: int | None = None
    classification: DiagnosticsClassification = DiagnosticsClassification.HOST_UNREACHABLE
    summary: str = ""

    @property
    def working_unit_ids(self) -> list[int]:
        return [uid for uid, result in self.unit_ids.items() if result.works]

    @property
    def working_registers(self) -> list[str]:
        return [name for name, result in self.registers.items() if result.works]


# ---------------------------------------------------------------------------
# Reachability
# ---------------------------------------------------------------------------


async def ping_host(host: str, timeout_s: int = PING_TIMEOUT_S) -> bool:
    """Send one ICMP echo to *host*.  Returns True on a reply."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "ping",
            "-c",
            "1",
            "-W",
            str(timeout_s),
            host,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await proc.communicate()
    except OSError:
        logger.warning("Unable to run ping for %s", host, exc_info=True)
        return False

    if proc.returncode != 0:
        logger.info(
            "Ping to %s failed: %s",
            host,
            stderr.decode(errors="replace").strip() or f"exit {proc.returncode}",
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def _probe(transport: ModbusTransport, address: int) -> ProbeResult:
    try:
        words = await transport.read_holding_registers(address, 1)
    except TransportError as exc:
        return ProbeResult(works=False, error=str(exc))
    return ProbeResult(works=True, value=words[0] if words else None)


def classify(report: DiagnosticsReport) -> tuple[DiagnosticsClassification, str]:
    """Reduce a report to its worst finding and a human-readable summary."""
    conn = report.connectivity
    if not conn.ping_success:
        return (
            DiagnosticsClassification.HOST_UNREACHABLE,
            "CRITICAL: Cannot ping Victron system. Check network connectivity "
            "and IP address.",
        )
    if not conn.modbus_connect_success:
        return (
            DiagnosticsClassification.BUS_UNREACHABLE,
            "CRITICAL: Ping successful but ModbusTCP connection failed. Check if "
            "ModbusTCP service is enabled on the Cerbo GX.",
        )
    unit_ids = report.working_unit_ids
    if not unit_ids:
        return (
            DiagnosticsClassification.NO_UNIT_ID,
            "ERROR: ModbusTCP connection works but no valid Unit IDs found. "
            "Check Victron configuration.",
        )
    registers = report.working_registers
    if not registers:
        return (
            DiagnosticsClassification.NO_REGISTERS,
            f"WARNING: Found working Unit ID(s) {', '.join(map(str, unit_ids))} "
            "but no registers could be read. Check Victron firmware version.",
        )
    return (
        DiagnosticsClassification.OPERATIONAL,
        f"SUCCESS: Found {len(unit_ids)} working Unit ID(s) and "
        f"{len(registers)} working registers. System should work correctly.",
    )


class DiagnosticsRunner:
    """Runs diagnostics against a disposable Modbus session.

    Args:
        config: Connection parameters to test.
        transport_factory: Builds the disposable transport.
        ping: Reachability check.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport_factory: Callable[..., ModbusTransport] = ModbusTransport,
        ping: Callable[[str], Awaitable[bool]] = ping_host,
    ) -> None:
        self._config = config
        self._transport_factory = transport_factory
        self._ping = ping

    async def run(self) -> DiagnosticsReport:
        """Execute all diagnostic steps and return the report."""
        host, port = self._config.host, self._config.port
        logger.info("Running Victron system diagnostics against %s:%d", host, port)
        report = DiagnosticsReport(connectivity=Connectivity(host=host, port=port))

        report.connectivity.ping_success = await self._ping(host)

        transport = self._transport_factory(
            host=host,
            port=port,
            timeout_s=self._config.timeout,
        )
        try:
            await transport.connect()
        except ConnectError as exc:
            logger.info("ModbusTCP connection test failed: %s", exc)
        else:
            report.connectivity.modbus_connect_success = True
            try:
                await self._scan(transport, report)
            finally:
                await transport.disconnect()

        report.classification, report.summary = classify(report)
        logger.info("Diagnostics complete: %s", report.summary)
        return report

    async def _scan(self, transport: ModbusTransport, report: DiagnosticsReport) -> None:
        for unit_id in DIAGNOSTIC_UNIT_IDS:
            transport.set_target(unit_id)
            result = await _probe(transport, PROBE_ADDRESS)
            logger.debug("Diagnostic Unit ID %d: %s", unit_id, result)
            report.unit_ids[unit_id] = result

        working = report.working_unit_ids
        test_unit_id = working[0] if working else DEFAULT_UNIT_ID
        report.tested_unit_id = test_unit_id
        transport.set_target(test_unit_id)

        for name, address in DIAGNOSTIC_REGISTERS:
            result = await _probe(transport, address)
            logger.debug(
                "Diagnostic register %s (%d) on Unit ID %d: %s",
                name,
                address,
                test_unit_id,
                result,
            )
            report.registers[name] = result
