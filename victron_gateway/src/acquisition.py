"""
Acquisition loop: periodic register reads, derivations and snapshot publish.

Each cycle walks ``Idle -> Reading -> Deriving -> Publishing -> Idle``:

- **Simulation enabled**: the simulation generator builds a fresh snapshot
  and it is published with ``api_status = simulation``.  The bus is
  never touched.
- **Not connected**: one reconnect attempt (guarded so overlapping cycles
  never reconnect concurrently).  On failure only ``api_status`` changes to
  ``error``; no reads are attempted against a dead session.
- **Empty working register map**: simulation is switched on and the cycle
  takes the simulated branch.
- **Connected**: every working register is read, decoded and scaled into a
  private copy of the snapshot.  A failed field keeps its previous value.
  Derived values follow (grid total, grid connectivity, time-to-go, DC
  system power via an ordered fallback chain) and the copy is published.
  The first real cycle after simulated ones starts from an empty snapshot,
  so real and simulated values never share one.

A connection-level failure anywhere in the cycle sets ``api_status = error``
and drops the session so the next cycle takes the reconnect path.  Cycles
are started on a fixed-rate timer; a tick that lands while the previous
cycle is still running is skipped, not queued.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-009)
- 2026-10-19: Keep real and simulated values apart; reconnect under the cycle error handler (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from victron_gateway.src.decoder import decode_words
from victron_gateway.src.exceptions import (
    ConnectError,
    DecodeError,
    GatewayPathUnavailableError,
    TransportError,
)
from victron_gateway.src.fallback import Strategy, constant, first_available
from victron_gateway.src.models import NO_ESTIMATE, ApiStatus, Snapshot
from victron_gateway.src.registers import (
    BATTERY_STATE_MAP,
    CANDIDATE_UNIT_IDS,
    SYSTEM_STATE_MAP,
    RegisterDef,
)

if TYPE_CHECKING:
    from victron_gateway.src.simulation import SimulationGenerator
    from victron_gateway.src.snapshot import SnapshotStore
    from victron_gateway.src.transport import ModbusTransport

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_POLL_INTERVAL_S: float = 5.0

PV_ACTIVE_THRESHOLD_W: float = 10.0
"""PV power above which the charger counts as charging."""

DC_POWER_REGISTERS: tuple[str, ...] = (
    "DC_SYSTEM_POWER",
    "DC_SYSTEM_POWER_ALT",
    "DC_SYSTEM_POWER_ALT2",
    "DC_POWER",
)
"""DC system power sources in priority order.  Read lazily by the chain."""


class CycleState(StrEnum):
    """Where the acquisition loop is within a cycle."""

    IDLE = "idle"
    READING = "reading"
    DERIVING = "deriving"
    PUBLISHING = "publishing"
    STOPPED = "stopped"


# ---------------------------------------------------------------------------
# Field setters: logical register name -> snapshot field
# ---------------------------------------------------------------------------


def _set_battery_state(snapshot: Snapshot, value: float) -> None:
    snapshot.battery.state = BATTERY_STATE_MAP.get(int(value), "unknown")


def _set_system_state(snapshot: Snapshot, value: float) -> None:
    snapshot.system_overview.state = SYSTEM_STATE_MAP.get(int(value), "Unknown")


def _setter(section: str, attr: str) -> Callable[[Snapshot, float], None]:
    def _set(snapshot: Snapshot, value: float) -> None:
        setattr(getattr(snapshot, section), attr, value)

    return _set


FIELD_SETTERS: dict[str, Callable[[Snapshot, float], None]] = {
    "BATTERY_SOC": _setter("battery", "soc"),
    "BATTERY_VOLTAGE": _setter("battery", "voltage"),
    "BATTERY_CURRENT": _setter("battery", "current"),
    "BATTERY_POWER": _setter("battery", "power"),
    "BATTERY_STATE": _set_battery_state,
    "GRID_POWER": _setter("grid", "power"),
    "GRID_L1_POWER": _setter("grid", "l1_power"),
    "GRID_L2_POWER": _setter("grid", "l2_power"),
    "GRID_L3_POWER": _setter("grid", "l3_power"),
    "GRID_VOLTAGE": _setter("grid", "voltage"),
    "GRID_CURRENT": _setter("grid", "current"),
    "GRID_FREQUENCY": _setter("grid", "frequency"),
    "PV_POWER": _setter("pv_charger", "power"),
    "PV_VOLTAGE": _setter("pv_charger", "voltage"),
    "PV_CURRENT": _setter("pv_charger", "current"),
    "PV_YIELD_TODAY": _setter("pv_charger", "daily_yield"),
    "AC_CONSUMPTION": _setter("ac_loads", "power"),
    "SYSTEM_STATE": _set_system_state,
}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def next_unit_id(current: int, candidates: Sequence[int] = CANDIDATE_UNIT_IDS) -> int:
    """Return the candidate after *current*, wrapping around.

    An unknown *current* maps to the first candidate.
    """
    try:
        index = candidates.index(current)
    except ValueError:
        return candidates[0]
    return candidates[(index + 1) % len(candidates)]


def is_connection_lost(exc: BaseException) -> bool:
    """True when *exc* means the TCP session itself is gone."""
    if isinstance(exc, TransportError):
        return exc.is_connection_lost
    if isinstance(exc, (ConnectError, ConnectionError)):
        return True
    return "Port is closed" in str(exc)


async def read_register(transport: ModbusTransport, register: RegisterDef) -> float:
    """Read and decode one register under its bound Unit ID."""
    transport.set_target(register.unit_id)
    words = await transport.read_holding_registers(register.address, register.word_count)
    logger.debug(
        "Register %s (%d, unit %d) raw=%s",
        register.name,
        register.address,
        register.unit_id,
        words,
    )
    return decode_words(register, words)


async def read_field(
    transport: ModbusTransport,
    working: dict[str, RegisterDef],
    name: str,
    candidates: Sequence[int] = CANDIDATE_UNIT_IDS,
) -> float | None:
    """Read the working register for *name*.

    A gateway-path rejection is retried once on the next candidate Unit ID;
    if that succeeds the working entry is rebound to it.  Other per-field
    failures are logged and yield ``None``.

    Raises:
        TransportError: Only when the session itself was lost.
    """
    register = working.get(name)
    if register is None:
        return None

    try:
        return await read_register(transport, register)
    except GatewayPathUnavailableError as exc:
        retry_id = next_unit_id(register.unit_id, candidates)
        logger.info(
            "Gateway path unavailable for %s on Unit ID %d, trying Unit ID %d",
            name,
            register.unit_id,
            retry_id,
        )
        retargeted = register.with_unit_id(retry_id)
        try:
            value = await read_register(transport, retargeted)
        except TransportError as retry_exc:
            if retry_exc.is_connection_lost:
                raise
            logger.warning(
                "Failed to read %s: %s (retry on Unit ID %d: %s)",
                name,
                exc,
                retry_id,
                retry_exc,
            )
            return None
        except DecodeError:
            logger.warning("Failed to decode %s on Unit ID %d", name, retry_id)
            return None
        working[name] = retargeted
        return value
    except TransportError as exc:
        if exc.is_connection_lost:
            raise
        logger.warning("Failed to read %s: %s", name, exc)
        return None
    except DecodeError as exc:
        logger.warning("Failed to decode %s: %s", name, exc)
        return None


async def read_into_snapshot(
    transport: ModbusTransport,
    working: dict[str, RegisterDef],
    snapshot: Snapshot,
    candidates: Sequence[int] = CANDIDATE_UNIT_IDS,
) -> dict[str, float]:
    """Read every working register (except the DC chain) into *snapshot*.

    Returns:
        The values read successfully this cycle, keyed by logical name.
    """
    values: dict[str, float] = {}
    for name in list(working):
        if name in DC_POWER_REGISTERS:
            continue
        value = await read_field(transport, working, name, candidates)
        if value is None:
            continue
        values[name] = value
        setter = FIELD_SETTERS.get(name)
        if setter is None:
            logger.debug("No snapshot field for register %s", name)
            continue
        setter(snapshot, value)
    return values


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def estimate_time_to_go(soc: float, current: float) -> str:
    """Coarse runtime estimate: ``soc * 0.1`` hours while discharging."""
    if current >= 0:
        return NO_ESTIMATE
    hours_remaining = max(0.0, soc * 0.1)
    hours = int(hours_remaining)
    minutes = int((hours_remaining - hours) * 60)
    return f"{hours}:{minutes:02d}"


async def derive_grid_power(snapshot: Snapshot, direct: float | None) -> None:
    """Resolve grid total power, then the grid connectivity flag.

    The direct register wins when it read a non-zero value; otherwise the
    phase sum is used when any phase is non-zero.
    """
    grid = snapshot.grid
    phases = (grid.l1_power, grid.l2_power, grid.l3_power)
    resolved = await first_available(
        [
            Strategy("GRID_POWER", constant(direct if direct else None)),
            Strategy(
                "phase_sum",
                constant(sum(phases) if any(phases) else None),
            ),
        ]
    )
    if resolved is not None:
        grid.power = resolved.value
    elif direct is not None:
        grid.power = direct

    grid.is_connected = bool(grid.power or any(phases) or grid.voltage)


def computed_dc_power(snapshot: Snapshot) -> float:
    """Last-resort DC system power estimate from battery and PV power."""
    return abs(snapshot.battery.power) + snapshot.pv_charger.power


async def derive_dc_power(
    transport: ModbusTransport,
    working: dict[str, RegisterDef],
    snapshot: Snapshot,
    candidates: Sequence[int] = CANDIDATE_UNIT_IDS,
) -> str:
    """Resolve DC system power from the first source that answers.

    Returns:
        Name of the source used.
    """

    def _register_attempt(name: str) -> Callable[[], Awaitable[float | None]]:
        async def _attempt() -> float | None:
            value = await read_field(transport, working, name, candidates)
            return abs(value) if value is not None else None

        return _attempt

    strategies = [
        Strategy(name, _register_attempt(name))
        for name in DC_POWER_REGISTERS
        if name in working
    ]
    strategies.append(Strategy("computed", constant(computed_dc_power(snapshot))))

    resolved = await first_available(strategies)
    if resolved is None:
        return "none"
    snapshot.dc_system.power = resolved.value
    return resolved.source


def derive_display_fields(snapshot: Snapshot) -> None:
    """Update states and labels that follow from the numeric readings."""
    pv_active = snapshot.pv_charger.power > PV_ACTIVE_THRESHOLD_W
    snapshot.pv_charger.state = "charging" if pv_active else "idle"
    snapshot.dc_system.source = "solar" if pv_active else "battery"

    grid = snapshot.grid
    lines = [
        label
        for label, power in (
            ("L1", grid.l1_power),
            ("L2", grid.l2_power),
            ("L3", grid.l3_power),
        )
        if power
    ]
    if lines:
        snapshot.ac_loads.lines = lines

    snapshot.system_overview.ac_input = "Grid" if grid.is_connected else "Disconnected"
    snapshot.battery.time_to_go = estimate_time_to_go(
        snapshot.battery.soc, snapshot.battery.current
    )


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class AcquisitionLoop:
    """Fixed-rate scheduler that keeps the snapshot store current.

    Args:
        transport: The service's single Modbus session.
        store: Snapshot store this loop is the sole writer of.
        simulator: Generator used while simulation is enabled.
        reconnect: Coroutine that re-establishes the session (and re-runs
            discovery).  Returns True on success.
        interval_s: Seconds between cycle starts.
        candidates: Unit IDs used for gateway-path retargeting.
    """

    def __init__(
        self,
        *,
        transport: ModbusTransport,
        store: SnapshotStore,
        simulator: SimulationGenerator,
        reconnect: Callable[[], Awaitable[bool]],
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        candidates: Sequence[int] = CANDIDATE_UNIT_IDS,
    ) -> None:
        self._transport = transport
        self._store = store
        self._simulator = simulator
        self._reconnect = reconnect
        self._interval_s = interval_s
        self._candidates = tuple(candidates)

        self.working_registers: dict[str, RegisterDef] = {}
        self.simulation_enabled: bool = False
        self.state: CycleState = CycleState.IDLE

        self._cycle_active = False
        self._reconnecting = False
        self._last_published_simulated = False
        self._timer_task: asyncio.Task[None] | None = None
        self._cycle_task: asyncio.Task[bool] | None = None
        self._stop_event = asyncio.Event()

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def running(self) -> bool:
        """True while the interval timer is active."""
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def cycle_active(self) -> bool:
        return self._cycle_active

    # -- Timer ----------------------------------------------------------------

    def start(
        self,
        interval_s: float | None = None,
        *,
        fire_immediately: bool = True,
    ) -> None:
        """Start the timer.

        Args:
            interval_s: New interval, or None to keep the current one.
            fire_immediately: Run the first cycle now rather than after one
                interval.  Pass False when a cycle has just been run.
        """
        if interval_s is not None:
            self._interval_s = interval_s
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self.state = CycleState.IDLE
        self._timer_task = asyncio.create_task(self._run_timer(fire_immediately))
        logger.info("Started polling at %ss intervals", self._interval_s)

    async def stop(self) -> None:
        """Stop the timer and wait for an in-flight cycle to finish."""
        timer, self._timer_task = self._timer_task, None
        if timer is not None:
            self._stop_event.set()
            await timer
            logger.info("Stopped polling")
        cycle, self._cycle_task = self._cycle_task, None
        if cycle is not None and not cycle.done():
            await cycle
        self.state = CycleState.STOPPED

    async def restart(self, interval_s: float | None = None) -> None:
        """Restart the timer, optionally with a new interval."""
        await self.stop()
        self.start(interval_s)

    async def _run_timer(self, fire_immediately: bool) -> None:
        fire = fire_immediately
        while not self._stop_event.is_set():
            if not fire:
                fire = True
            elif self._cycle_task is None or self._cycle_task.done():
                self._cycle_task = asyncio.create_task(self.run_cycle())
            else:
                logger.debug("Previous cycle still running, skipping tick")
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._interval_s,
                )

    # -- Cycle ----------------------------------------------------------------

    async def run_cycle(self) -> bool:
        """Run one acquisition cycle.

        Returns:
            False if the cycle was suppressed because another was running.
        """
        if self._cycle_active:
            logger.debug("Acquisition cycle already running, suppressed")
            return False
        self._cycle_active = True
        try:
            await self._cycle()
        finally:
            self._cycle_active = False
            if self.state is not CycleState.STOPPED:
                self.state = CycleState.IDLE
        return True

    def publish_simulated(self) -> None:
        """Publish the next simulated snapshot.

        The snapshot comes straight from the generator; nothing from the
        last published (possibly real) snapshot is carried into it.
        """
        self.state = CycleState.PUBLISHING
        snapshot = self._simulator.generate()
        snapshot.last_update = datetime.now(tz=UTC)
        snapshot.api_status = ApiStatus.SIMULATION
        self._store.publish(snapshot)
        self._last_published_simulated = True

    async def _cycle(self) -> None:
        if self.simulation_enabled:
            self.publish_simulated()
            return

        try:
            if not self._transport.connected:
                if not await self._reconnect_once():
                    return
                if self.simulation_enabled:
                    self.publish_simulated()
                    return

            if not self.working_registers:
                logger.warning("Working register map is empty, switching to simulation mode")
                self.simulation_enabled = True
                self.publish_simulated()
                return

            await self._read_and_publish()
        except Exception as exc:
            logger.error("Error polling data: %s", exc, exc_info=True)
            self._store.set_status(ApiStatus.ERROR)
            if is_connection_lost(exc):
                logger.warning("Connection lost, will reconnect on next cycle")
                await self._transport.disconnect()

    async def _reconnect_once(self) -> bool:
        """One guarded reconnect attempt.  False if skipped or failed."""
        if self._reconnecting:
            logger.debug("Reconnect already in progress")
            return False
        self._reconnecting = True
        try:
            logger.info("Not connected, attempting to reconnect")
            ok = await self._reconnect()
        finally:
            self._reconnecting = False
        if not ok:
            self._store.set_status(ApiStatus.ERROR)
        return ok

    async def _read_and_publish(self) -> None:
        working = self.working_registers

        self.state = CycleState.READING
        # Leaving simulation: start clean so no synthetic value survives
        if self._last_published_simulated:
            snapshot = Snapshot()
        else:
            snapshot = self._store.working_copy()
        values = await read_into_snapshot(
            self._transport, working, snapshot, self._candidates
        )

        self.state = CycleState.DERIVING
        await derive_grid_power(snapshot, values.get("GRID_POWER"))
        dc_source = await derive_dc_power(
            self._transport, working, snapshot, self._candidates
        )
        derive_display_fields(snapshot)

        self.state = CycleState.PUBLISHING
        snapshot.last_update = datetime.now(tz=UTC)
        snapshot.api_status = ApiStatus.CONNECTED
        if snapshot.is_all_zero():
            logger.warning(
                "All data values are zero. This might indicate a connection "
                "issue or incorrect register map."
            )
        self._store.publish(snapshot)
        self._last_published_simulated = False
        logger.debug(
            "Published snapshot: %d/%d register(s) read, DC power via %s",
            len(values),
            len(working),
            dc_source,
        )
