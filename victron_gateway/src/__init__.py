"""
Victron gateway package for the RV control backend.

Reads energy-system telemetry from a Victron Cerbo GX over Modbus TCP,
discovers which Unit IDs and registers the installation exposes, and keeps
an always-available snapshot for the REST layer. Falls back to simulated
data whenever the bus is unreachable or yields no usable registers.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""
