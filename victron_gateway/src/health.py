"""
Health file writer for the gateway daemon.

Writes a JSON health file at a configurable path with three fields:
- last_poll_ts: ISO timestamp of the most recently published snapshot.
- api_status: The snapshot's ``api_status`` (connected, simulation, ...).
- working_register_count: Size of the working register map.

The file is rewritten on every published snapshot, providing a simple
liveness signal that a systemd watchdog or Docker HEALTHCHECK can inspect.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from victron_gateway.src.models import ApiStatus, Snapshot


class HealthWriter:
    """Writes gateway health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._api_status: str = ApiStatus.CONNECTING.value
        self._working_register_count: int = 0

    def record_snapshot(self, snapshot: Snapshot, working_register_count: int) -> None:
        """Record a published snapshot and write the health file.

        Args:
            snapshot: The snapshot that was just published.
            working_register_count: Registers currently in the working map.
        """
        self._last_poll_ts = snapshot.last_update.isoformat()
        self._api_status = snapshot.api_status.value
        self._working_register_count = working_register_count
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_poll_ts": self._last_poll_ts,
            "api_status": self._api_status,
            "working_register_count": self._working_register_count,
        }
        self.path.write_text(json.dumps(data))
