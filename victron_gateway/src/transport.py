"""
Async Modbus TCP transport for the Victron Cerbo GX.

Owns exactly one pymodbus ``AsyncModbusTcpClient`` session and exposes a
single read primitive, ``read_holding_registers``, addressed at whatever Unit
ID was last selected with ``set_target``.  Modbus multiplexes the Unit ID per
request, so switching targets never touches the TCP session.

Every read is bounded by the configured timeout and every failure is mapped
onto a :class:`~victron_gateway.src.exceptions.TransportError` subclass:

- no answer in time               -> ``TransportTimeoutError``
- session closed / never opened   -> ``ConnectionClosedError``
- Modbus exception 0x0A or 0x0B   -> ``GatewayPathUnavailableError``
- anything else                   -> ``TransportError`` (kind ``OTHER``)

Reconnecting is the caller's job; this class never retries on its own.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from victron_gateway.src.exceptions import (
    ConnectError,
    ConnectionClosedError,
    GatewayPathUnavailableError,
    TransportError,
    TransportTimeoutError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_PORT: int = 502
"""Standard Modbus TCP port."""

MODBUS_TIMEOUT_S: float = 10.0
"""Default timeout per Modbus TCP request in seconds."""

DEFAULT_UNIT_ID: int = 100
"""Cerbo GX system service Unit ID."""

GATEWAY_PATH_UNAVAILABLE: int = 0x0A
GATEWAY_TARGET_NO_RESPONSE: int = 0x0B
_GATEWAY_EXCEPTION_CODES = frozenset({GATEWAY_PATH_UNAVAILABLE, GATEWAY_TARGET_NO_RESPONSE})


class ModbusTransport:
    """Single-session Modbus TCP client with per-call Unit ID targeting.

    Not safe for concurrent use: callers must serialise access (the service
    runs discovery, polling and reconnects on one asyncio task at a time).

    Args:
        host: Cerbo GX IP address or hostname.
        port: Modbus TCP port (default 502).
        timeout_s: Per-request timeout in seconds.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = DEFAULT_PORT,
        timeout_s: float = MODBUS_TIMEOUT_S,
    ) -> None:
        self._host = host
        self._port = port
        self._timeout_s = timeout_s
        self._unit_id = DEFAULT_UNIT_ID
        self._client: AsyncModbusTcpClient | None = None

    # -- Properties ---------------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    @property
    def target(self) -> int:
        """Unit ID addressed by subsequent reads."""
        return self._unit_id

    @property
    def connected(self) -> bool:
        """True while the underlying TCP session is open."""
        return self._client is not None and bool(self._client.connected)

    # -- Lifecycle ----------------------------------------------------------

    def reconfigure(
        self,
        *,
        host: str | None = None,
        port: int | None = None,
        timeout_s: float | None = None,
    ) -> None:
        """Change connection parameters.  Takes effect on the next connect()."""
        if host is not None:
            self._host = host
        if port is not None:
            self._port = port
        if timeout_s is not None:
            self._timeout_s = timeout_s

    async def connect(self) -> None:
        """Open the TCP session, replacing any previous one.

        Raises:
            ConnectError: If the session could not be established.
        """
        await self.disconnect()

        client = AsyncModbusTcpClient(
            self._host,
            port=self._port,
            timeout=self._timeout_s,
        )
        try:
            ok = await client.connect()
        except Exception as exc:
            client.close()
            logger.warning(
                "Failed to connect to Modbus device at %s:%d",
                self._host,
                self._port,
                exc_info=True,
            )
            raise ConnectError(self._host, self._port, str(exc)) from exc

        if not ok:
            client.close()
            logger.warning(
                "Failed to connect to Modbus device at %s:%d (connect returned False)",
                self._host,
                self._port,
            )
            raise ConnectError(self._host, self._port, "connect returned False")

        self._client = client
        logger.info("Connected to Modbus TCP at %s:%d", self._host, self._port)

    async def disconnect(self) -> None:
        """Close the TCP session.  Safe to call when already closed."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.close()
        except Exception:
            logger.warning("Error while closing Modbus client", exc_info=True)
        else:
            logger.debug("Disconnected from %s:%d", self._host, self._port)

    # -- Reads ----------------------------------------------------------------

    def set_target(self, unit_id: int) -> None:
        """Select the Unit ID for subsequent reads."""
        self._unit_id = unit_id

    async def read_holding_registers(self, address: int, count: int = 1) -> list[int]:
        """Read *count* holding registers starting at *address*.

        Returns:
            The raw 16-bit words.

        Raises:
            TransportError: On timeout, closed session, gateway rejection or
                any other Modbus error.
        """
        unit_id = self._unit_id
        client = self._client
        if client is None or not client.connected:
            raise ConnectionClosedError(
                "Port is closed",
                unit_id=unit_id,
                address=address,
            )

        try:
            response = await asyncio.wait_for(
                client.read_holding_registers(address, count=count, device_id=unit_id),
                timeout=self._timeout_s,
            )
        except TimeoutError as exc:
            raise TransportTimeoutError(
                f"Timed out reading register {address} (unit {unit_id})",
                unit_id=unit_id,
                address=address,
            ) from exc
        except ConnectionException as exc:
            raise ConnectionClosedError(
                f"Connection lost reading register {address} (unit {unit_id}): {exc}",
                unit_id=unit_id,
                address=address,
            ) from exc
        except ModbusIOException as exc:
            raise TransportTimeoutError(
                f"No response reading register {address} (unit {unit_id}): {exc}",
                unit_id=unit_id,
                address=address,
            ) from exc
        except ModbusException as exc:
            raise TransportError(
                f"Modbus error reading register {address} (unit {unit_id}): {exc}",
                unit_id=unit_id,
                address=address,
            ) from exc

        if response.isError():
            code = getattr(response, "exception_code", None)
            if code in _GATEWAY_EXCEPTION_CODES:
                raise GatewayPathUnavailableError(
                    f"Gateway path unavailable for unit {unit_id} "
                    f"(register {address}, exception 0x{code:02X})",
                    unit_id=unit_id,
                    address=address,
                )
            raise TransportError(
                f"Modbus exception reading register {address} "
                f"(unit {unit_id}, code {code})",
                unit_id=unit_id,
                address=address,
            )

        return list(response.registers)
