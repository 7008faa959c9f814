"""
Unit ID and register discovery for Victron installations.

Victron GX devices expose each connected product under its own Modbus Unit
ID, and which IDs exist varies per installation.  Discovery runs once per
successful connection and works out:

1. **Topology** -- which candidate Unit IDs answer a canonical probe read.
   ``GatewayPathUnavailable`` is the normal reply for an unconfigured ID and
   is not treated as a connectivity problem.  If nothing answers, a default
   Unit ID is seeded so register discovery still has something to try.
2. **Registers** -- which (register, Unit ID) pairs read successfully:

   a. every primary-profile register on every working Unit ID; when several
      Unit IDs answer, the last one in probe order is kept;
   b. the grid-meter profile, gated on one representative register probed
      on every Unit ID (last answer kept);
   c. only if (a) and (b) found nothing: the shunt, solar and MPPT profiles
      in that order, each gated on one representative register.  The first
      profile whose representative answers is adopted in full and the search
      stops.

Individual probe failures are expected and only logged at DEBUG.  Only an
empty result is actionable, and that decision belongs to the caller.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-005)
- 2026-10-19: Probe every (register, Unit ID) pair; last success wins (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from victron_gateway.src.exceptions import GatewayPathUnavailableError, TransportError
from victron_gateway.src.registers import (
    ALTERNATE_PROFILES,
    CANDIDATE_UNIT_IDS,
    FALLBACK_UNIT_ID,
    GRID_METER_PROFILE,
    PRIMARY_PROFILE,
    PROBE_ADDRESS,
    DeviceProfile,
    RegisterDef,
)

if TYPE_CHECKING:
    from victron_gateway.src.transport import ModbusTransport

logger = logging.getLogger(__name__)

WorkingRegisterMap = dict[str, RegisterDef]
"""Logical field name -> register bound to a confirmed Unit ID."""


# ---------------------------------------------------------------------------
# Single probes
# ---------------------------------------------------------------------------


async def probe_unit_id(
    transport: ModbusTransport,
    unit_id: int,
    *,
    address: int = PROBE_ADDRESS,
) -> list[int] | None:
    """Read one word at *address* under *unit_id*.

    Returns:
        The raw words on success, ``None`` on any transport failure.
    """
    transport.set_target(unit_id)
    try:
        words = await transport.read_holding_registers(address, 1)
    except GatewayPathUnavailableError:
        logger.debug("Unit ID %d not configured on this system", unit_id)
        return None
    except TransportError as exc:
        logger.debug("Unit ID %d failed: %s", unit_id, exc)
        return None
    logger.debug("Unit ID %d responded: %s", unit_id, words)
    return words


async def probe_register(
    transport: ModbusTransport,
    register: RegisterDef,
    unit_id: int,
) -> bool:
    """Return True if *register* reads successfully under *unit_id*."""
    transport.set_target(unit_id)
    try:
        words = await transport.read_holding_registers(
            register.address, register.word_count
        )
    except TransportError as exc:
        logger.debug(
            "Register %s (%d) with Unit ID %d failed: %s",
            register.name,
            register.address,
            unit_id,
            exc,
        )
        return False
    logger.debug(
        "Register %s (%d) works with Unit ID %d: %s",
        register.name,
        register.address,
        unit_id,
        words,
    )
    return True


# ---------------------------------------------------------------------------
# Topology discovery
# ---------------------------------------------------------------------------


async def discover_unit_ids(
    transport: ModbusTransport,
    candidates: Iterable[int] = CANDIDATE_UNIT_IDS,
    *,
    probe_address: int = PROBE_ADDRESS,
    fallback_unit_id: int = FALLBACK_UNIT_ID,
) -> list[int]:
    """Find which candidate Unit IDs answer the canonical probe read.

    Every candidate is tried; a failing ID never aborts the scan.

    Args:
        transport: Connected transport.
        candidates: Unit IDs to probe, in order.
        probe_address: Register read for each probe.
        fallback_unit_id: Seeded when no candidate answers.

    Returns:
        Working Unit IDs in probe order.  Never empty.
    """
    logger.info("Starting Unit ID discovery")
    working: list[int] = []
    for unit_id in candidates:
        if unit_id in working:
            continue
        if await probe_unit_id(transport, unit_id, address=probe_address) is not None:
            working.append(unit_id)

    if not working:
        logger.warning(
            "No Unit ID answered the probe at register %d, falling back to Unit ID %d",
            probe_address,
            fallback_unit_id,
        )
        working.append(fallback_unit_id)
    else:
        logger.info("Unit ID discovery completed. Working IDs: %s", working)
    return working


# ---------------------------------------------------------------------------
# Register discovery
# ---------------------------------------------------------------------------


async def adopt_profile(
    transport: ModbusTransport,
    profile: DeviceProfile,
    unit_ids: Sequence[int],
    *,
    last_wins: bool = False,
) -> WorkingRegisterMap:
    """Adopt *profile* under a Unit ID whose representative answers.

    Only the representative register is probed; when it reads successfully
    every register in the profile is bound to that Unit ID in one batch.

    Args:
        transport: Connected transport.
        profile: Profile to adopt.
        unit_ids: Working Unit IDs in probe order.
        last_wins: Probe every Unit ID and bind to the last one that
            answers, instead of stopping at the first.

    Returns:
        The adopted registers, or an empty dict if no Unit ID answered.
    """
    representative = profile.representative_register
    chosen: int | None = None
    for unit_id in unit_ids:
        if await probe_register(transport, representative, unit_id):
            chosen = unit_id
            if not last_wins:
                break

    if chosen is None:
        logger.debug("%s profile not present on any working Unit ID", profile.name)
        return {}
    logger.info(
        "Adopting %s profile (%d registers) under Unit ID %d",
        profile.name,
        len(profile.registers),
        chosen,
    )
    return {name: reg.with_unit_id(chosen) for name, reg in profile.registers.items()}


async def discover_registers(
    transport: ModbusTransport,
    unit_ids: Sequence[int],
    *,
    primary: DeviceProfile = PRIMARY_PROFILE,
    grid_meter: DeviceProfile = GRID_METER_PROFILE,
    alternates: Sequence[DeviceProfile] = ALTERNATE_PROFILES,
) -> WorkingRegisterMap:
    """Build the working register map for the given Unit IDs.

    Every primary register is probed on every Unit ID and bound to the
    last one it read under.  The grid-meter profile is always tried, is
    bound to the last Unit ID whose representative answers, and overrides
    primary phase entries when present.  Alternates are consulted only when
    the map is still empty, and each binds to the first Unit ID that answers.

    Args:
        transport: Connected transport.
        unit_ids: Working Unit IDs from :func:`discover_unit_ids`.
        primary: Primary device profile.
        grid_meter: Grid meter profile, probed regardless of primary results.
        alternates: Fallback profiles in priority order.

    Returns:
        The working register map.  Empty when nothing was found.
    """
    logger.info("Starting register discovery on Unit IDs %s", list(unit_ids))
    working: WorkingRegisterMap = {}

    # -- Primary profile, every register on every Unit ID; later hits rebind --
    for unit_id in unit_ids:
        for name, reg in primary.registers.items():
            if await probe_register(transport, reg, unit_id):
                working[name] = reg.with_unit_id(unit_id)

    logger.info(
        "Primary register discovery found %d register(s): %s",
        len(working),
        sorted(working),
    )

    # -- Grid meter, gated on its representative --
    working.update(await adopt_profile(transport, grid_meter, unit_ids, last_wins=True))

    # -- Alternates, only when nothing else worked --
    if not working:
        logger.warning("No standard registers working, trying alternate profiles")
        for profile in alternates:
            adopted = await adopt_profile(transport, profile, unit_ids)
            if adopted:
                working.update(adopted)
                break

    if working:
        logger.info(
            "Register discovery completed. Working registers: %s",
            sorted(working),
        )
    else:
        logger.warning("Register discovery found no working registers")
    return working
