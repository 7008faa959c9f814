"""
Victron Cerbo GX Modbus TCP register catalog -- single source of truth.

Declares every holding register the gateway knows about: address, encoding,
scaling factor and the Unit ID it is *expected* under.  The Unit ID is only
a hint; discovery rebinds each register to whichever Unit ID actually
answers on a given installation.

Registers are grouped into device profiles.  The primary profile is the
Cerbo GX system service (``com.victronenergy.system``, Unit ID 100).  The
alternate profiles cover installations where values live on a separate
device service instead (SmartShunt, SmartSolar, MPPT, grid meter).

References:
    - Victron "CCGX-Modbus-TCP-register-list" spreadsheet
    - Victron GX Modbus-TCP manual, section "Unit ID mapping"

CHANGELOG:
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal

Encoding = Literal["uint16", "int16", "uint32"]

# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RegisterDef:
    """Definition of a single Modbus holding register value.

    Attributes:
        name: Logical field name (e.g. ``"BATTERY_SOC"``), used as map key.
        address: Holding register start address.
        encoding: One of ``"uint16"``, ``"int16"``, ``"uint32"``.
        scale: Multiplicative factor applied after decoding.
        unit_id: Default Unit ID hint.  Discovery overrides it.
        unit: Engineering unit string (e.g. ``"W"``, ``"%"``).
        description: Free-text description of the register.
        word_count: Number of 16-bit words.  Derived from *encoding* when
            not set explicitly (uint16/int16 -> 1, uint32 -> 2).
    """

    name: str
    address: int
    encoding: Encoding
    scale: float = 1.0
    unit_id: int = 100
    unit: str = ""
    description: str = ""
    word_count: int = field(default=0, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        if self.word_count == 0:
            wc = _DEFAULT_WORD_COUNTS.get(self.encoding)
            if wc is None:
                msg = (
                    f"Register '{self.name}': unsupported encoding "
                    f"'{self.encoding}'"
                )
                raise ValueError(msg)
            # frozen=True requires object.__setattr__
            object.__setattr__(self, "word_count", wc)

    def with_unit_id(self, unit_id: int) -> RegisterDef:
        """Return a copy of this register bound to *unit_id*."""
        return RegisterDef(
            name=self.name,
            address=self.address,
            encoding=self.encoding,
            scale=self.scale,
            unit_id=unit_id,
            unit=self.unit,
            description=self.description,
            word_count=self.word_count,
        )


_DEFAULT_WORD_COUNTS: dict[str, int] = {
    "uint16": 1,
    "int16": 1,
    "uint32": 2,
}


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    """A named set of registers exposed by one kind of Victron device.

    Attributes:
        name: Profile identifier (e.g. ``"SMARTSHUNT"``).
        registers: Logical field name -> :class:`RegisterDef`.
        representative: Logical name of the register probed on its own to
            decide whether the whole profile is present.
    """

    name: str
    registers: MappingProxyType[str, RegisterDef]
    representative: str

    @classmethod
    def build(
        cls,
        name: str,
        registers: list[RegisterDef],
        representative: str,
    ) -> DeviceProfile:
        """Build a profile from an ordered register list."""
        by_name = {reg.name: reg for reg in registers}
        if representative not in by_name:
            msg = f"Profile '{name}': representative '{representative}' not defined"
            raise ValueError(msg)
        return cls(
            name=name,
            registers=MappingProxyType(by_name),
            representative=representative,
        )

    @property
    def representative_register(self) -> RegisterDef:
        """The gate register for this profile."""
        return self.registers[self.representative]


# ---------------------------------------------------------------------------
# Primary profile: Cerbo GX system service (Unit ID 100)
# ---------------------------------------------------------------------------

_PRIMARY_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        name="SYSTEM_STATE",
        address=826,
        encoding="uint16",
        description="VE.Bus state of the main inverter/charger",
    ),
    RegisterDef(
        name="AC_CONSUMPTION",
        address=817,
        encoding="uint16",
        unit="W",
        description="AC consumption on output L1",
    ),
    RegisterDef(
        name="GRID_POWER",
        address=820,
        encoding="int16",
        unit="W",
        description="Grid power. Positive = consuming, negative = feeding in.",
    ),
    RegisterDef(
        name="GRID_L1_POWER",
        address=820,
        encoding="int16",
        unit="W",
        description="Grid power on L1",
    ),
    RegisterDef(
        name="GRID_L2_POWER",
        address=821,
        encoding="int16",
        unit="W",
        description="Grid power on L2",
    ),
    RegisterDef(
        name="GRID_L3_POWER",
        address=822,
        encoding="int16",
        unit="W",
        description="Grid power on L3",
    ),
    RegisterDef(
        name="GRID_VOLTAGE",
        address=800,
        encoding="uint16",
        scale=0.1,
        unit="V",
        description="Grid voltage",
    ),
    RegisterDef(
        name="GRID_CURRENT",
        address=803,
        encoding="int16",
        scale=0.1,
        unit="A",
        description="Grid current",
    ),
    RegisterDef(
        name="GRID_FREQUENCY",
        address=806,
        encoding="uint16",
        scale=0.01,
        unit="Hz",
        description="Grid frequency",
    ),
    RegisterDef(
        name="BATTERY_SOC",
        address=843,
        encoding="uint16",
        scale=0.01,
        unit="%",
        description="Battery state of charge",
    ),
    RegisterDef(
        name="BATTERY_VOLTAGE",
        address=840,
        encoding="int16",
        scale=0.01,
        unit="V",
        description="Battery voltage",
    ),
    RegisterDef(
        name="BATTERY_CURRENT",
        address=841,
        encoding="int16",
        scale=0.1,
        unit="A",
        description="Battery current. Negative = discharging.",
    ),
    RegisterDef(
        name="BATTERY_POWER",
        address=842,
        encoding="int16",
        unit="W",
        description="Battery power. Negative = discharging.",
    ),
    RegisterDef(
        name="BATTERY_STATE",
        address=844,
        encoding="uint16",
        description="Battery state (0 idle, 1 charging, 2 discharging)",
    ),
    RegisterDef(
        name="PV_POWER",
        address=850,
        encoding="uint16",
        unit="W",
        description="PV power from DC-coupled chargers",
    ),
    RegisterDef(
        name="PV_CURRENT",
        address=851,
        encoding="uint16",
        scale=0.1,
        unit="A",
        description="PV current from DC-coupled chargers",
    ),
    RegisterDef(
        name="PV_VOLTAGE",
        address=852,
        encoding="uint16",
        scale=0.01,
        unit="V",
        description="PV voltage",
    ),
    RegisterDef(
        name="PV_YIELD_TODAY",
        address=855,
        encoding="uint16",
        scale=0.01,
        unit="kWh",
        description="PV energy harvested today",
    ),
    RegisterDef(
        name="DC_SYSTEM_POWER",
        address=860,
        encoding="int16",
        unit="W",
        description="DC system power",
    ),
    RegisterDef(
        name="DC_SYSTEM_POWER_ALT",
        address=771,
        encoding="int16",
        unit="W",
        description="DC system power, alternate location on older firmware",
    ),
    RegisterDef(
        name="DC_SYSTEM_POWER_ALT2",
        address=865,
        encoding="int16",
        unit="W",
        description="DC system power, second alternate location",
    ),
]

PRIMARY_PROFILE = DeviceProfile.build(
    "PRIMARY",
    _PRIMARY_REGISTERS,
    representative="BATTERY_SOC",
)

# ---------------------------------------------------------------------------
# Alternate profiles
# ---------------------------------------------------------------------------

SMARTSHUNT_PROFILE = DeviceProfile.build(
    "SMARTSHUNT",
    [
        RegisterDef(
            name="BATTERY_SOC",
            address=266,
            encoding="uint16",
            scale=0.01,
            unit_id=225,
            unit="%",
            description="SmartShunt state of charge",
        ),
        RegisterDef(
            name="BATTERY_VOLTAGE",
            address=259,
            encoding="uint16",
            scale=0.01,
            unit_id=225,
            unit="V",
            description="SmartShunt battery voltage",
        ),
        RegisterDef(
            name="BATTERY_CURRENT",
            address=261,
            encoding="int16",
            scale=0.1,
            unit_id=225,
            unit="A",
            description="SmartShunt battery current",
        ),
        RegisterDef(
            name="DC_POWER",
            address=260,
            encoding="int16",
            unit_id=225,
            unit="W",
            description="SmartShunt DC power",
        ),
    ],
    representative="BATTERY_SOC",
)

SMARTSOLAR_PROFILE = DeviceProfile.build(
    "SMARTSOLAR",
    [
        RegisterDef(
            name="PV_POWER",
            address=789,
            encoding="uint16",
            unit_id=226,
            unit="W",
            description="SmartSolar PV power",
        ),
        RegisterDef(
            name="PV_VOLTAGE",
            address=776,
            encoding="uint16",
            scale=0.01,
            unit_id=226,
            unit="V",
            description="SmartSolar PV voltage",
        ),
        RegisterDef(
            name="PV_CURRENT",
            address=777,
            encoding="uint16",
            scale=0.1,
            unit_id=226,
            unit="A",
            description="SmartSolar PV current",
        ),
    ],
    representative="PV_POWER",
)

MPPT_PROFILE = DeviceProfile.build(
    "MPPT",
    [
        RegisterDef(
            name="PV_POWER",
            address=789,
            encoding="uint16",
            unit_id=239,
            unit="W",
            description="MPPT PV power",
        ),
        RegisterDef(
            name="PV_CURRENT",
            address=777,
            encoding="uint16",
            scale=0.1,
            unit_id=239,
            unit="A",
            description="MPPT PV current",
        ),
        RegisterDef(
            name="DC_POWER",
            address=865,
            encoding="int16",
            unit_id=239,
            unit="W",
            description="MPPT DC output power",
        ),
    ],
    representative="DC_POWER",
)

GRID_METER_PROFILE = DeviceProfile.build(
    "GRID_METER",
    [
        RegisterDef(
            name="GRID_L1_POWER",
            address=2600,
            encoding="int16",
            unit_id=30,
            unit="W",
            description="Grid meter L1 power",
        ),
        RegisterDef(
            name="GRID_L2_POWER",
            address=2601,
            encoding="int16",
            unit_id=30,
            unit="W",
            description="Grid meter L2 power",
        ),
        RegisterDef(
            name="GRID_L3_POWER",
            address=2602,
            encoding="int16",
            unit_id=30,
            unit="W",
            description="Grid meter L3 power",
        ),
    ],
    representative="GRID_L1_POWER",
)

ALTERNATE_PROFILES: tuple[DeviceProfile, ...] = (
    SMARTSHUNT_PROFILE,
    SMARTSOLAR_PROFILE,
    MPPT_PROFILE,
)
"""Alternates tried (in this order) only when nothing else was found."""

# ---------------------------------------------------------------------------
# Topology probing
# ---------------------------------------------------------------------------

CANDIDATE_UNIT_IDS: tuple[int, ...] = (100, 0, 1, 225, 226, 227, 228, 229, 239, 30, 20)
"""Unit IDs probed by topology discovery, in order."""

DIAGNOSTIC_UNIT_IDS: tuple[int, ...] = (0, 1, 100, 225, 226, 227, 228, 229, 239, 30)
"""Unit IDs probed by the diagnostics runner."""

FALLBACK_UNIT_ID: int = 1
"""Seeded into the working set when no candidate answers."""

PROBE_ADDRESS: int = 800
"""Canonical probe register (grid voltage), present on most installations."""

# ---------------------------------------------------------------------------
# State maps
# ---------------------------------------------------------------------------

BATTERY_STATE_MAP: dict[int, str] = {
    0: "idle",
    1: "charging",
    2: "discharging",
}

SYSTEM_STATE_MAP: dict[int, str] = {
    0: "Off",
    1: "Low power",
    2: "VE.Bus Fault",
    3: "Bulk charging",
    4: "Absorption charging",
    5: "Float charging",
    6: "Storage mode",
    7: "Equalisation charging",
    8: "Passthru",
    9: "Inverting",
    10: "Assisting",
    11: "Power supply mode",
    252: "External control",
}
