"""
Ordered first-to-succeed fallback chains.

Installations expose some values (DC system power, grid total) on different
registers or not at all.  Each candidate source is a named async attempt
returning a value or ``None``; :func:`first_available` runs them in order
and stops at the first one that produces a value, so the priority order
lives in one list rather than in nested conditionals.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Attempt = Callable[[], Awaitable[float | None]]
"""An async source that returns a value, or ``None`` when unavailable."""


@dataclass(frozen=True, slots=True)
class Strategy:
    """One named source in a fallback chain."""

    name: str
    attempt: Attempt


@dataclass(frozen=True, slots=True)
class Resolved:
    """The value produced by a fallback chain and which source produced it."""

    source: str
    value: float


async def first_available(strategies: Iterable[Strategy]) -> Resolved | None:
    """Evaluate *strategies* in order and return the first value produced.

    Returns:
        The first non-``None`` result, or ``None`` if every source was
        unavailable.
    """
    for strategy in strategies:
        value = await strategy.attempt()
        if value is not None:
            logger.debug("Fallback chain resolved via %s: %s", strategy.name, value)
            return Resolved(source=strategy.name, value=value)
        logger.debug("Fallback source %s unavailable", strategy.name)
    return None


def constant(value: float | None) -> Attempt:
    """Wrap an already-known value as an attempt."""

    async def _attempt() -> float | None:
        return value

    return _attempt
