"""
Exception hierarchy for the Victron gateway.

Every error raised by the gateway derives from :class:`GatewayError` so the
service layer can catch bus problems with a single ``except`` clause while
still telling connection-level failures apart from per-register failures.

Transport failures carry a :class:`TransportErrorKind` so callers can branch
on *why* a read failed (timeout, dropped session, wrong Unit ID) without
string matching on pymodbus messages.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from enum import StrEnum


class GatewayError(Exception):
    """Base exception for all Victron gateway errors."""


class ConnectError(GatewayError):
    """The TCP/Modbus session to the Cerbo GX could not be established."""

    def __init__(self, host: str, port: int, reason: str = "") -> None:
        self.host = host
        self.port = port
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Failed to connect to {host}:{port}{detail}")


class DecodeError(GatewayError):
    """A register response did not carry enough words for its encoding."""


class TransportErrorKind(StrEnum):
    """Why a single Modbus read failed."""

    TIMEOUT = "timeout"
    CONNECTION_CLOSED = "connection_closed"
    GATEWAY_PATH_UNAVAILABLE = "gateway_path_unavailable"
    OTHER = "other"


class TransportError(GatewayError):
    """A single holding-register read failed.

    Attributes:
        kind: Failure classification.
        unit_id: Unit ID that was addressed, when known.
        address: Register address that was read, when known.
    """

    kind: TransportErrorKind = TransportErrorKind.OTHER

    def __init__(
        self,
        message: str,
        *,
        kind: TransportErrorKind | None = None,
        unit_id: int | None = None,
        address: int | None = None,
    ) -> None:
        if kind is not None:
            self.kind = kind
        self.unit_id = unit_id
        self.address = address
        super().__init__(message)

    @property
    def is_connection_lost(self) -> bool:
        """True when the failure means the TCP session itself is gone."""
        return self.kind is TransportErrorKind.CONNECTION_CLOSED


class TransportTimeoutError(TransportError):
    """The device did not answer within the configured timeout."""

    kind = TransportErrorKind.TIMEOUT


class ConnectionClosedError(TransportError):
    """The TCP session was closed (or never opened) when the read was issued."""

    kind = TransportErrorKind.CONNECTION_CLOSED


class GatewayPathUnavailableError(TransportError):
    """The Cerbo GX rejected the Unit ID (Modbus exception 0x0A/0x0B).

    This is the normal answer for a Unit ID that is not configured on the
    installation, not a connectivity problem.
    """

    kind = TransportErrorKind.GATEWAY_PATH_UNAVAILABLE
