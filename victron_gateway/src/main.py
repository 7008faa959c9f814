"""
Gateway daemon entrypoint.

Loads :class:`~victron_gateway.src.config.GatewaySettings`, builds the
:class:`~victron_gateway.src.service.VictronGatewayService`, initialises it
(connect, discovery, first cycle) and keeps it polling until SIGTERM/SIGINT.

Structured JSON logging is used for all events.  A HealthWriter follows
the snapshot subscription and rewrites the health file after every
published snapshot.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from victron_gateway.src.health import HealthWriter

if TYPE_CHECKING:
    from victron_gateway.src.config import GatewaySettings
    from victron_gateway.src.service import VictronGatewayService
    from victron_gateway.src.snapshot import Subscription

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the gateway daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: GatewaySettings) -> None:
    """Log a config summary at startup.

    Args:
        settings: A GatewaySettings instance (or any object with the same attrs).
    """
    logger.info(
        "Victron gateway starting with config: "
        "victron_host=%s, victron_port=%s, modbus_timeout_s=%s, "
        "poll_interval_s=%s, debug=%s, start_in_simulation=%s, health_path=%s",
        settings.victron_host,
        settings.victron_port,
        settings.modbus_timeout_s,
        settings.poll_interval_s,
        settings.debug,
        settings.start_in_simulation,
        settings.health_path,
    )


# ---------------------------------------------------------------------------
# Health follower
# ---------------------------------------------------------------------------


async def _follow_health(
    subscription: Subscription,
    service: VictronGatewayService,
    health: HealthWriter,
) -> None:
    """Rewrite the health file for every snapshot on *subscription*.

    Write failures are logged and never stop the follower.
    """
    try:
        async for snapshot in subscription:
            try:
                health.record_snapshot(snapshot, len(service.working_registers))
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)
    finally:
        subscription.close()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run_service(
    *,
    service: VictronGatewayService,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Initialise *service* and keep it running until shutdown_event is set.

    Args:
        service: The gateway service to run.
        shutdown_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
    """
    follower: asyncio.Task[None] | None = None
    if health is not None:
        follower = asyncio.create_task(
            _follow_health(service.subscribe(), service, health)
        )

    try:
        connected = await service.initialize()
        logger.info(
            "Gateway initialised (connected=%s, api_status=%s)",
            connected,
            service.get_api_status(),
        )
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down gateway")
        await service.shutdown()
        if follower is not None:
            follower.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await follower
        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build the service, run until signalled.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from victron_gateway.src.config import GatewaySettings
    from victron_gateway.src.service import VictronGatewayService

    settings = GatewaySettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    service = VictronGatewayService.from_settings(settings)

    await run_service(
        service=service,
        shutdown_event=shutdown_event,
        health=HealthWriter(settings.health_path),
    )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the gateway daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
