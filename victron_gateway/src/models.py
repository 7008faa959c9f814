"""
Pydantic models for the gateway's externally visible system snapshot.

A :class:`Snapshot` is the complete best-known state of the energy system:
battery, grid, PV charger, AC loads, DC system and overview, plus the last
update time and the service health (:class:`ApiStatus`).  Field names are
snake_case in Python and serialise to camelCase (``timeToGo``,
``pvCharger``...) for the REST layer.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NO_ESTIMATE: str = "--:--"
"""Time-to-go sentinel when no estimate is available."""


class ApiStatus(StrEnum):
    """Health of the data feed behind the snapshot."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    SIMULATION = "simulation"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatteryStatus(_CamelModel):
    """Battery bank state.

    Attributes:
        soc: State of charge in percent (0-100).
        voltage: Battery voltage in volts.
        current: Battery current in amps.  Negative = discharging.
        power: Battery power in watts.  Negative = discharging.
        state: ``idle``, ``charging``, ``discharging`` or ``unknown``.
        time_to_go: ``H:MM`` estimate, or ``--:--`` when not discharging.
    """

    soc: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    power: float = 0.0
    state: str = "idle"
    time_to_go: str = NO_ESTIMATE


class GridStatus(_CamelModel):
    """Shore/grid input state.  Power is positive when consuming."""

    power: float = 0.0
    l1_power: float = 0.0
    l2_power: float = 0.0
    l3_power: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    frequency: float = 0.0
    is_connected: bool = False


class PVChargerStatus(_CamelModel):
    """Solar charger state."""

    power: float = 0.0
    daily_yield: float = 0.0
    state: str = "idle"
    voltage: float = 0.0
    current: float = 0.0


class ACLoadsStatus(_CamelModel):
    """AC consumption and the phases currently carrying load."""

    power: float = 0.0
    lines: list[str] = Field(default_factory=lambda: ["L1"])


class DCSystemStatus(_CamelModel):
    """DC loads and where their power is coming from."""

    power: float = 0.0
    source: str = "battery"


class SystemOverview(_CamelModel):
    """Inverter/charger summary."""

    name: str = "Cerbo GX"
    state: str = "Off"
    ac_input: str = "Grid"
    mode: str = "ON"
    ac_limit: float = 50.0


class Snapshot(_CamelModel):
    """The complete system state published by the acquisition loop.

    Exactly one live instance exists per service.  Consumers only ever see
    a fully assembled copy; the loop builds the next one on a private copy
    and swaps it in.
    """

    battery: BatteryStatus = Field(default_factory=BatteryStatus)
    grid: GridStatus = Field(default_factory=GridStatus)
    pv_charger: PVChargerStatus = Field(default_factory=PVChargerStatus)
    ac_loads: ACLoadsStatus = Field(default_factory=ACLoadsStatus)
    dc_system: DCSystemStatus = Field(default_factory=DCSystemStatus)
    system_overview: SystemOverview = Field(default_factory=SystemOverview)
    tanks: list[dict[str, Any]] = Field(default_factory=list)
    last_update: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    api_status: ApiStatus = ApiStatus.CONNECTING

    def is_all_zero(self) -> bool:
        """True when every headline numeric reading is zero.

        Usually means a wrong register map or a dead link rather than a
        genuinely idle system.
        """
        return all(
            value == 0
            for value in (
                self.battery.soc,
                self.battery.voltage,
                self.battery.current,
                self.battery.power,
                self.pv_charger.power,
                self.ac_loads.power,
                self.grid.power,
                self.dc_system.power,
            )
        )
