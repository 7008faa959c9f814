"""
Gateway configuration.

Two layers:

- :class:`GatewaySettings` -- process configuration loaded once from
  environment variables or a ``.env`` file (Pydantic BaseSettings).
- :class:`GatewayConfig` -- the runtime connection/polling parameters the
  service owns.  It can be partially updated at runtime through
  ``update_configuration`` and serialises with camelCase keys for the REST
  layer (``pollInterval``).

All durations are in seconds.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


def _check_port(v: int) -> int:
    if v < 1 or v > 65535:
        raise ValueError("port must be between 1 and 65535")
    return v


def _check_timeout(v: float) -> float:
    if v <= 0:
        raise ValueError("timeout must be > 0 seconds")
    return v


def _check_poll_interval(v: float) -> float:
    if v < 1:
        raise ValueError("poll interval must be >= 1 second")
    return v


class GatewayConfig(BaseModel):
    """Runtime connection and polling parameters.

    Attributes:
        host: Cerbo GX IP address / hostname.
        port: Modbus TCP port.
        timeout: Per-request Modbus timeout in seconds.
        poll_interval: Seconds between acquisition cycles.
        debug: Log per-register probe and read details.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    host: str
    port: int = 502
    timeout: float = 10.0
    poll_interval: float = 5.0
    debug: bool = False

    @field_validator("port")
    @classmethod
    def port_must_be_valid(cls, v: int) -> int:
        """Validate Modbus TCP port is in valid range."""
        return _check_port(v)

    @field_validator("timeout")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        """Every bus read must be bounded."""
        return _check_timeout(v)

    @field_validator("poll_interval")
    @classmethod
    def poll_interval_must_be_reasonable(cls, v: float) -> float:
        """Validate the interval does not hammer the GX device."""
        return _check_poll_interval(v)


class GatewaySettings(BaseSettings):
    """Gateway process configuration.

    All values are loaded from environment variables.  ``VICTRON_HOST`` is
    required; everything else has a default.

    Attributes:
        victron_host: Cerbo GX IP address / hostname on the RV LAN.
        victron_port: Modbus TCP port (default 502).
        modbus_timeout_s: Per-request timeout in seconds (default 10).
        poll_interval_s: Seconds between acquisition cycles (default 5).
        debug: Verbose probe/read logging.
        start_in_simulation: Skip the bus entirely and serve simulated data.
        health_path: Path of the JSON health file written by the daemon.
    """

    victron_host: str
    victron_port: int = 502
    modbus_timeout_s: float = 10.0
    poll_interval_s: float = 5.0
    debug: bool = False
    start_in_simulation: bool = False
    health_path: str = "/data/health.json"

    @field_validator("victron_port")
    @classmethod
    def victron_port_must_be_valid(cls, v: int) -> int:
        """Validate Modbus TCP port is in valid range."""
        return _check_port(v)

    @field_validator("modbus_timeout_s")
    @classmethod
    def modbus_timeout_must_be_positive(cls, v: float) -> float:
        """Validate the Modbus timeout is positive."""
        return _check_timeout(v)

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_reasonable(cls, v: float) -> float:
        """Validate the poll interval is at least one second."""
        return _check_poll_interval(v)

    def to_gateway_config(self) -> GatewayConfig:
        """Build the runtime config the service starts with."""
        return GatewayConfig(
            host=self.victron_host,
            port=self.victron_port,
            timeout=self.modbus_timeout_s,
            poll_interval=self.poll_interval_s,
            debug=self.debug,
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
