"""
REST surface for the Victron gateway service.

``create_app(service)`` builds a FastAPI application whose lifespan
initialises the service on startup and shuts it down on exit.  All routes
live under ``/api/victron`` and wrap their payload as
``{"status": "success", "data": ...}`` with camelCase keys.  The service is
stored on ``app.state.service`` for the route handlers.

``create_app_from_env()`` is the zero-argument variant for ASGI servers: it
builds the service from the process settings first.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-015)
- 2026-10-19: create_app_from_env() factory (STORY-016)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, ValidationError

from victron_gateway.src.config import GatewaySettings
from victron_gateway.src.service import VictronGatewayService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/victron", tags=["victron"])


class SimulationToggle(BaseModel):
    """Request body for POST /simulation."""

    enabled: bool


# ---------------------------------------------------------------------------
# Dependencies and helpers
# ---------------------------------------------------------------------------


def _get_service(request: Request) -> VictronGatewayService:
    return request.app.state.service


Service = Annotated[VictronGatewayService, Depends(_get_service)]


def _success(data: Any) -> dict[str, Any]:
    """Wrap *data* in the success envelope, serialising pydantic models."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, mode="json")
    return {"status": "success", "data": data}


# ---------------------------------------------------------------------------
# Snapshot routes
# ---------------------------------------------------------------------------


@router.get("/all")
async def get_all(service: Service) -> dict[str, Any]:
    """Return the full snapshot plus refresh interval and timestamp."""
    return _success(service.get_all_data())


@router.get("/battery")
async def get_battery(service: Service) -> dict[str, Any]:
    return _success(service.get_battery_status())


@router.get("/pv")
async def get_pv(service: Service) -> dict[str, Any]:
    return _success(service.get_pv_charger())


@router.get("/ac-loads")
async def get_ac_loads(service: Service) -> dict[str, Any]:
    return _success(service.get_ac_loads())


@router.get("/dc-system")
async def get_dc_system(service: Service) -> dict[str, Any]:
    return _success(service.get_dc_system())


@router.get("/grid")
async def get_grid(service: Service) -> dict[str, Any]:
    return _success(service.get_grid())


@router.get("/system")
async def get_system(service: Service) -> dict[str, Any]:
    return _success(service.get_system_overview())


@router.get("/status")
async def get_status(service: Service) -> dict[str, Any]:
    """Return the connection status of the acquisition engine."""
    return _success(
        {
            "apiStatus": service.get_api_status().value,
            "connected": service.connected,
            "simulationEnabled": service.simulation_enabled,
        }
    )


# ---------------------------------------------------------------------------
# Control routes
# ---------------------------------------------------------------------------


@router.get("/config")
async def get_config(service: Service) -> dict[str, Any]:
    return _success(service.get_configuration())


@router.put("/config")
async def put_config(
    service: Service,
    partial: Annotated[dict[str, Any], Body()],
) -> dict[str, Any]:
    """Apply a partial configuration update.

    Raises:
        HTTPException: 422 if a supplied value is invalid.
    """
    try:
        service.update_configuration(partial)
    except ValidationError as exc:
        logger.info("Rejected configuration update: %s", exc)
        raise HTTPException(
            status_code=422,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    return _success(service.get_configuration())


@router.post("/simulation")
async def post_simulation(service: Service, body: SimulationToggle) -> dict[str, Any]:
    enabled = service.toggle_simulation(body.enabled)
    return _success({"simulationEnabled": enabled})


@router.get("/diagnostics")
async def get_diagnostics(service: Service) -> dict[str, Any]:
    """Run on-demand diagnostics on a disposable Modbus session."""
    report = await service.run_diagnostics()
    data = report.model_dump(mode="json")
    data["workingUnitIds"] = report.working_unit_ids
    data["workingRegisters"] = report.working_registers
    return _success(data)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(service: VictronGatewayService) -> FastAPI:
    """Build the FastAPI application around *service*.

    Args:
        service: The gateway service; initialised on startup and shut down
            when the application exits.

    Returns:
        FastAPI: The configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        connected = await service.initialize()
        logger.info("Victron gateway API ready (connected=%s)", connected)
        yield
        logger.info("Victron gateway API shutting down")
        await service.shutdown()

    app = FastAPI(
        title="Victron Gateway API",
        description="Live Victron energy-system data over Modbus TCP.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.include_router(router)
    return app


def create_app_from_env() -> FastAPI:
    """Zero-argument factory for ASGI servers.

    Loads :class:`~victron_gateway.src.config.GatewaySettings` from the
    environment (and ``.env``), builds the service and wraps it, e.g.
    ``uvicorn --factory victron_gateway.src.api:create_app_from_env``.
    """
    settings = GatewaySettings()
    logger.info(
        "Building Victron gateway API for %s:%d",
        settings.victron_host,
        settings.victron_port,
    )
    return create_app(VictronGatewayService.from_settings(settings))
