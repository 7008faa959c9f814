"""
Pure decoder that turns raw holding-register words into engineering values.

Takes the word list returned by a single ``read_holding_registers`` call and
the :class:`~victron_gateway.src.registers.RegisterDef` it was read for,
applies the encoding (uint16 / int16 / uint32, high word first) and the
scaling factor, and returns a float.

No I/O, no logging side effects beyond a warning on malformed input.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from victron_gateway.src.exceptions import DecodeError
from victron_gateway.src.registers import RegisterDef

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type conversion helpers
# ---------------------------------------------------------------------------


def convert_u16(raw: int) -> int:
    """Interpret a raw value as unsigned 16-bit (no conversion needed)."""
    return raw & 0xFFFF


def convert_s16(raw: int) -> int:
    """Interpret a raw 16-bit value as signed (two's complement)."""
    val = raw & 0xFFFF
    if val > 0x7FFF:
        val -= 0x10000
    return val


def convert_u32(hi: int, lo: int) -> int:
    """Assemble two U16 registers (high word first) into unsigned 32-bit."""
    return ((hi & 0xFFFF) << 16) | (lo & 0xFFFF)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decode_raw(register: RegisterDef, words: Sequence[int]) -> int:
    """Decode *words* per the register encoding, without scaling.

    Raises:
        DecodeError: If fewer words than the encoding needs were supplied.
    """
    if len(words) < register.word_count:
        logger.warning(
            "Register '%s': expected %d word(s) for %s, got %d",
            register.name,
            register.word_count,
            register.encoding,
            len(words),
        )
        msg = (
            f"Register '{register.name}' ({register.address}): expected "
            f"{register.word_count} word(s), got {len(words)}"
        )
        raise DecodeError(msg)

    if register.encoding == "uint32":
        return convert_u32(words[0], words[1])
    if register.encoding == "int16":
        return convert_s16(words[0])
    return convert_u16(words[0])


def decode_words(register: RegisterDef, words: Sequence[int]) -> float:
    """Decode and scale a register response.

    Args:
        register: Definition of the register that was read.
        words: Raw 16-bit words returned by the device.

    Returns:
        ``raw * register.scale`` where ``raw`` is the signed or unsigned
        integer value for the register's encoding.

    Raises:
        DecodeError: If the response is too short for the encoding.
    """
    return decode_raw(register, words) * register.scale
