"""
Victron gateway service: the one handle the rest of the backend talks to.

Owns the Modbus transport, the snapshot store, the discovery results and the
acquisition loop for exactly one Cerbo GX endpoint.  The caller constructs
it, awaits :meth:`VictronGatewayService.initialize`, reads snapshots through
the getters or a subscription, and awaits
:meth:`VictronGatewayService.shutdown` when done.  There is no module-level
instance.

Startup policy: connect, discover Unit IDs, discover registers, then poll.
If the connection fails or discovery finds no usable register, the service
switches to simulated data instead of failing.  Readers never see an
exception; they see the last assembled snapshot and its ``api_status``.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-013)
- 2026-10-19: from_settings() constructor (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from victron_gateway.src.acquisition import AcquisitionLoop
from victron_gateway.src.config import GatewayConfig, GatewaySettings
from victron_gateway.src.diagnostics import DiagnosticsReport, DiagnosticsRunner
from victron_gateway.src.discovery import discover_registers, discover_unit_ids
from victron_gateway.src.exceptions import ConnectError
from victron_gateway.src.models import (
    ACLoadsStatus,
    ApiStatus,
    BatteryStatus,
    DCSystemStatus,
    GridStatus,
    PVChargerStatus,
    Snapshot,
    SystemOverview,
)
from victron_gateway.src.registers import CANDIDATE_UNIT_IDS, RegisterDef
from victron_gateway.src.simulation import SimulationGenerator
from victron_gateway.src.snapshot import SnapshotStore, Subscription
from victron_gateway.src.transport import ModbusTransport

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "victron_gateway"

_CONFIG_KEYS: dict[str, str] = {
    "host": "host",
    "port": "port",
    "timeout": "timeout",
    "pollInterval": "poll_interval",
    "poll_interval": "poll_interval",
    "debug": "debug",
}
"""Accepted update_configuration keys -> GatewayConfig field names."""


def apply_log_level(debug: bool) -> None:
    """Switch the package logger between DEBUG and INFO."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if debug else logging.INFO)


class VictronGatewayService:
    """Adaptive Modbus acquisition service for one Victron installation.

    Args:
        config: Initial connection and polling parameters.
        transport: Modbus transport.  Built from *config* when omitted.
        simulator: Simulation generator.  Unseeded when omitted.
        diagnostics_factory: Builds the diagnostics runner for a config.
        candidates: Unit IDs probed by topology discovery.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        transport: ModbusTransport | None = None,
        simulator: SimulationGenerator | None = None,
        diagnostics_factory: Callable[[GatewayConfig], DiagnosticsRunner] = DiagnosticsRunner,
        candidates: Sequence[int] = CANDIDATE_UNIT_IDS,
    ) -> None:
        self._config = config
        self._transport = transport or ModbusTransport(
            host=config.host,
            port=config.port,
            timeout_s=config.timeout,
        )
        self._store = SnapshotStore()
        self._diagnostics_factory = diagnostics_factory
        self._candidates = tuple(candidates)
        self._working_unit_ids: list[int] = []
        self._loop = AcquisitionLoop(
            transport=self._transport,
            store=self._store,
            simulator=simulator or SimulationGenerator(),
            reconnect=self._establish,
            interval_s=config.poll_interval,
            candidates=self._candidates,
        )
        self._reconfigure_lock = asyncio.Lock()
        self._background: set[asyncio.Task[None]] = set()
        apply_log_level(config.debug)

    @classmethod
    def from_settings(cls, settings: GatewaySettings) -> VictronGatewayService:
        """Build a service from process settings, honouring start-in-simulation."""
        service = cls(settings.to_gateway_config())
        if settings.start_in_simulation:
            service.toggle_simulation(True)
        return service

    # -- State ----------------------------------------------------------------

    @property
    def config(self) -> GatewayConfig:
        return self._config

    @property
    def store(self) -> SnapshotStore:
        return self._store

    @property
    def acquisition(self) -> AcquisitionLoop:
        return self._loop

    @property
    def connected(self) -> bool:
        return self._transport.connected

    @property
    def simulation_enabled(self) -> bool:
        return self._loop.simulation_enabled

    @property
    def working_unit_ids(self) -> list[int]:
        return list(self._working_unit_ids)

    @property
    def working_registers(self) -> dict[str, RegisterDef]:
        return dict(self._loop.working_registers)

    # -- Lifecycle ------------------------------------------------------------

    async def initialize(self) -> bool:
        """Connect, run discovery and start polling.

        The first acquisition cycle completes before this returns, so the
        snapshot and ``api_status`` already reflect real (or simulated)
        data.

        Returns:
            True if the Modbus connection was established.
        """
        if self._loop.simulation_enabled:
            logger.info("Using simulation mode - not connecting to Modbus")
            connected = False
        else:
            connected = await self._establish()
            if not connected:
                logger.warning(
                    "Failed to connect to Victron system, enabling simulation mode"
                )
                self._loop.simulation_enabled = True

        await self._loop.run_cycle()
        self._loop.start(self._config.poll_interval, fire_immediately=False)
        return connected

    async def _establish(self) -> bool:
        """Open the session and rebuild the working Unit ID / register maps."""
        self._store.set_status(ApiStatus.CONNECTING)
        logger.info(
            "Connecting to Victron ModbusTCP at %s:%d",
            self._transport.host,
            self._transport.port,
        )
        try:
            await self._transport.connect()
        except ConnectError as exc:
            logger.warning("Connection error: %s", exc)
            self._store.set_status(ApiStatus.ERROR)
            return False

        unit_ids = await discover_unit_ids(self._transport, self._candidates)
        registers = await discover_registers(self._transport, unit_ids)
        self._working_unit_ids = unit_ids
        self._loop.working_registers = registers

        if not registers:
            logger.warning("No working registers found. Falling back to simulation mode.")
            self._loop.simulation_enabled = True
        self._store.set_status(ApiStatus.CONNECTED)
        return True

    async def start_polling(self) -> None:
        """Start the acquisition timer; the first cycle fires immediately."""
        self._loop.start(self._config.poll_interval)

    async def stop_polling(self) -> None:
        await self._loop.stop()

    async def poll_once(self) -> bool:
        """Run one acquisition cycle now.  False if one was already running."""
        return await self._loop.run_cycle()

    async def shutdown(self) -> None:
        """Finish pending reconfiguration, stop polling and disconnect."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._loop.stop()
        await self._transport.disconnect()
        self._store.set_status(ApiStatus.DISCONNECTED)
        logger.info("Victron gateway service stopped")

    # -- Snapshot readers -----------------------------------------------------

    def get_api_status(self) -> ApiStatus:
        return self._store.current.api_status

    def get_snapshot(self) -> Snapshot:
        return self._store.current

    def get_all_data(self) -> dict[str, Any]:
        """Full snapshot (camelCase keys) plus refresh interval and timestamp."""
        data = self._store.current.model_dump(by_alias=True, mode="json")
        data["timestamp"] = datetime.now(tz=UTC).isoformat()
        data["refreshInterval"] = self._config.poll_interval
        return data

    def get_battery_status(self) -> BatteryStatus:
        return self._store.current.battery

    def get_pv_charger(self) -> PVChargerStatus:
        return self._store.current.pv_charger

    def get_ac_loads(self) -> ACLoadsStatus:
        return self._store.current.ac_loads

    def get_dc_system(self) -> DCSystemStatus:
        return self._store.current.dc_system

    def get_grid(self) -> GridStatus:
        return self._store.current.grid

    def get_system_overview(self) -> SystemOverview:
        return self._store.current.system_overview

    def subscribe(self, maxsize: int = 1) -> Subscription:
        """Receive every snapshot published from now on."""
        return self._store.subscribe(maxsize)

    # -- Control --------------------------------------------------------------

    def toggle_simulation(self, enabled: bool) -> bool:
        """Switch simulated data on or off.

        Returns:
            The simulation state now in effect.
        """
        self._loop.simulation_enabled = enabled
        if enabled:
            logger.info("Simulation mode enabled")
            self._store.set_status(ApiStatus.SIMULATION)
        else:
            logger.info("Simulation mode disabled")
            self._store.set_status(
                ApiStatus.CONNECTED if self._transport.connected else ApiStatus.DISCONNECTED
            )
        return self._loop.simulation_enabled

    def update_configuration(self, partial: Mapping[str, Any]) -> bool:
        """Apply the supplied subset of ``host``, ``port``, ``timeout``,
        ``pollInterval`` and ``debug``.

        A changed host or port reconnects (and rediscovers) an open session;
        a changed poll interval restarts a running timer.  Both happen in a
        background task once any in-flight cycle has finished.

        Returns:
            True once the new values are in effect.

        Raises:
            pydantic.ValidationError: If a supplied value is invalid.
        """
        updates: dict[str, Any] = {}
        for key, value in partial.items():
            field_name = _CONFIG_KEYS.get(key)
            if field_name is None:
                logger.warning("Ignoring unknown configuration key '%s'", key)
                continue
            updates[field_name] = value

        old = self._config
        new = GatewayConfig.model_validate({**old.model_dump(), **updates})
        changed = {name for name in updates if getattr(old, name) != getattr(new, name)}
        self._config = new
        if not changed:
            return True
        logger.info("Configuration updated: %s", sorted(changed))

        if "debug" in changed:
            apply_log_level(new.debug)

        self._transport.reconfigure(host=new.host, port=new.port, timeout_s=new.timeout)

        reconnect = bool(changed & {"host", "port"}) and self._transport.connected
        restart = "poll_interval" in changed and self._loop.running
        if reconnect or restart:
            self._spawn(self._reconfigure(reconnect=reconnect))
        return True

    async def _reconfigure(self, *, reconnect: bool) -> None:
        async with self._reconfigure_lock:
            was_running = self._loop.running
            await self._loop.stop()
            if reconnect:
                await self._transport.disconnect()
                if not await self._establish():
                    logger.warning("Reconnect to %s failed", self._config.host)
            if was_running:
                self._loop.start(self._config.poll_interval)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def get_configuration(self) -> dict[str, Any]:
        """Current configuration and discovery state (camelCase keys)."""
        return {
            "host": self._config.host,
            "port": self._config.port,
            "timeout": self._config.timeout,
            "pollInterval": self._config.poll_interval,
            "debug": self._config.debug,
            "simulationEnabled": self._loop.simulation_enabled,
            "connected": self._transport.connected,
            "apiStatus": self._store.current.api_status.value,
            "workingUnitIds": list(self._working_unit_ids),
            "workingRegisters": list(self._loop.working_registers),
        }

    async def run_diagnostics(self) -> DiagnosticsReport:
        """Run on-demand diagnostics on a disposable session."""
        return await self._diagnostics_factory(self._config).run()
