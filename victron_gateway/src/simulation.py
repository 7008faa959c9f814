"""
Synthetic snapshot generator used when no real data is available.

Produces plausible RV energy-system values so the UI stays usable while the
Cerbo GX is unreachable or exposes no known registers:

- PV is active ~70% of cycles, 300-399 W when active.
- Shore power is connected ~80% of cycles, 115-120 V / 60-60.2 Hz.
- Battery SOC drifts +0.1 per cycle while any source is active and the bank
  is below 100%, otherwise -0.1, clamped to [5, 100].  Voltage follows SOC
  linearly on a 12 V bank.
- AC loads 100-149 W, DC loads 52-56 W.
- Daily PV yield only ever grows while PV is active.

Each cycle yields a freshly built snapshot; only SOC and daily yield are
carried by the generator itself.

The generator never touches the bus and never blocks.  Pass a seeded
``random.Random`` for reproducible sequences.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-010)
- 2026-10-19: Build each snapshot from scratch; generator owns SOC and yield (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import logging
import random

from victron_gateway.src.models import ApiStatus, Snapshot

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PV_ACTIVE_PROBABILITY: float = 0.7
GRID_ACTIVE_PROBABILITY: float = 0.8

SOC_STEP: float = 0.1
SOC_MIN: float = 5.0
SOC_MAX: float = 100.0

YIELD_STEP_KWH: float = 0.01

BATTERY_EMPTY_V: float = 12.2
"""Bank voltage at 0% SOC."""

BATTERY_SPAN_V: float = 1.6
"""Voltage gained between 0% and 100% SOC."""


class SimulationGenerator:
    """Builds one simulated snapshot per cycle.

    Only the generator's own running state (battery SOC and daily PV yield)
    carries over between cycles.  Every snapshot it returns is assembled
    from scratch, so no value read from the bus can leak into it.

    Args:
        rng: Random source.  Defaults to a fresh unseeded ``random.Random``.
        soc: Starting state of charge.  Seeded into the 25-74 % band when
            omitted.
    """

    def __init__(self, rng: random.Random | None = None, *, soc: float | None = None) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._soc = soc
        self._daily_yield = 0.0

    @property
    def soc(self) -> float | None:
        return self._soc

    @property
    def daily_yield(self) -> float:
        return self._daily_yield

    def generate(self) -> Snapshot:
        """Return the next simulated snapshot."""
        rng = self._rng
        snapshot = Snapshot(api_status=ApiStatus.SIMULATION)
        pv_active = rng.random() < PV_ACTIVE_PROBABILITY
        grid_active = rng.random() < GRID_ACTIVE_PROBABILITY

        # -- PV --
        pv = snapshot.pv_charger
        if pv_active:
            self._daily_yield = round(self._daily_yield + YIELD_STEP_KWH, 2)
            pv.power = float(300 + rng.randrange(100))
            pv.voltage = 18 + rng.random() * 2
            pv.current = pv.power / pv.voltage
            pv.state = "charging"
        else:
            pv.state = "idle"
        pv.daily_yield = self._daily_yield

        # -- Grid --
        grid = snapshot.grid
        grid.is_connected = grid_active
        if grid_active:
            grid.power = float(355 + rng.randrange(50))
            grid.l1_power = grid.power
            grid.voltage = 115 + rng.random() * 5
            grid.current = grid.power / grid.voltage
            grid.frequency = 60 + rng.random() * 0.2

        # -- Battery --
        if self._soc is None:
            self._soc = float(25 + rng.randrange(50))
            logger.debug("Seeded simulated SOC at %.1f%%", self._soc)

        battery = snapshot.battery
        if (pv_active or grid_active) and self._soc < SOC_MAX:
            self._soc = min(SOC_MAX, round(self._soc + SOC_STEP, 2))
            battery.current = 2 + rng.random()
            battery.power = float(25 + rng.randrange(10))
            battery.state = "charging"
        else:
            self._soc = max(SOC_MIN, round(self._soc - SOC_STEP, 2))
            battery.current = -(2 + rng.random())
            battery.power = -float(25 + rng.randrange(10))
            battery.state = "discharging"
        battery.soc = self._soc
        battery.voltage = BATTERY_EMPTY_V + (battery.soc / 100) * BATTERY_SPAN_V

        minutes = rng.randrange(60)
        if battery.state == "discharging":
            battery.time_to_go = f"{int(battery.soc // 10)}:{minutes:02d}"
        else:
            battery.time_to_go = f"{int((SOC_MAX - battery.soc) // 5)}:{minutes:02d}"

        # -- Loads --
        snapshot.ac_loads.power = float(100 + rng.randrange(50))
        snapshot.ac_loads.lines = ["L1"]
        snapshot.dc_system.power = float(52 + rng.randrange(5))
        snapshot.dc_system.source = "solar" if pv_active else "battery"

        # -- Overview --
        overview = snapshot.system_overview
        if pv_active:
            overview.state = "Charging"
        elif grid_active:
            overview.state = "Passthru"
        else:
            overview.state = "Inverting"
        overview.ac_input = "Grid" if grid_active else "Disconnected"
        return snapshot
