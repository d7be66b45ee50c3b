# ============================================================================
# HEALTH PROBE ROUTER
# ============================================================================
# EPOCH: 1 - HEALTH VERIFICATION
# STATUS: Infrastructure - FastAPI probe endpoints
# PURPOSE: Kubernetes readiness/liveness/startup probes over a StartupProbe
# CREATED: 14 OCT 2026
# ============================================================================
"""
Health Probe Router

FastAPI router exposing a StartupProbe to an orchestrator:

Endpoints:
    GET /health/ready    - Readiness probe (route traffic here?)
                           200 when phase is Ready, else 503.

    GET /health/live     - Liveness probe (restart this container?)
                           200 unless startup Failed, then 503.

    GET /health/startup  - Startup probe (still starting?)
                           200 once Ready or Failed, 503 while starting,
                           so a slow start is not killed early.

    GET /health/probe    - Full probe state including the event log
                           200 ready, 503 starting, 500 failed.

    GET /health/sdk      - Library name, version and features.

    GET /health/services - Runs the healthcheck engine against the
                           configured endpoints.
                           200 healthy, 206 degraded, 503 otherwise.

Probe bodies always carry status, phase, progress, elapsedMs and error.
"""

import logging
import platform
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.config import get_defaults
from health.core import HealthStatus
from health.executor import HealthcheckEngine
from health.options import HealthcheckOptions
from health.probe import StartupPhase, StartupProbe
from __version__ import __version__, BUILD_DATE, FEATURES, PACKAGE_NAME

logger = logging.getLogger(__name__)

SDK_HEADER = "X-Health-SDK"


def _status_to_http_code(status: HealthStatus) -> int:
    """Map health status to HTTP status code."""
    return {
        HealthStatus.HEALTHY: 200,
        HealthStatus.DEGRADED: 206,  # Partial Content
        HealthStatus.UNHEALTHY: 503,  # Service Unavailable
        HealthStatus.UNKNOWN: 503,  # Nothing checked
    }[status]


def _default_engine_factory() -> HealthcheckEngine:
    preset = get_defaults().healthcheck.preset
    return HealthcheckEngine(HealthcheckOptions.from_preset(preset))


def _probe_body(probe: StartupProbe, status: str) -> Dict[str, Any]:
    return {
        "status": status,
        "phase": probe.phase.value,
        "progress": probe.progress,
        "elapsedMs": probe.elapsed_ms,
        "error": probe.error,
    }


def create_health_router(
    probe: StartupProbe,
    engine_factory: Optional[Callable[[], HealthcheckEngine]] = None,
) -> APIRouter:
    """
    Build the probe router for one StartupProbe.

    Args:
        probe: The process's startup probe
        engine_factory: Builds the engine used by /health/services
            (preset from HEALTHCHECK_PRESET if None)

    Returns:
        APIRouter to mount with app.include_router()
    """
    router = APIRouter(tags=["Health"])
    make_engine = engine_factory or _default_engine_factory

    # ========================================================================
    # READINESS PROBE
    # ========================================================================

    @router.get("/health/ready")
    async def readiness_probe():
        """
        Kubernetes readiness probe.

        503 until the probe reaches Ready. Kubernetes keeps the pod out
        of the load balancer meanwhile.
        """
        if probe.is_ready:
            return JSONResponse(status_code=200, content=_probe_body(probe, "Ready"))
        return JSONResponse(status_code=503, content=_probe_body(probe, "NotReady"))

    # ========================================================================
    # LIVENESS PROBE
    # ========================================================================

    @router.get("/health/live")
    async def liveness_probe():
        """
        Kubernetes liveness probe.

        Only a terminal startup failure returns 503. A process that is
        still starting is alive.
        """
        if probe.is_alive:
            return JSONResponse(status_code=200, content=_probe_body(probe, "Alive"))

        body = _probe_body(probe, "Dead")
        details = probe.error_details
        body["errorDetails"] = (
            details.model_dump(mode="json", by_alias=True) if details is not None else None
        )
        return JSONResponse(status_code=503, content=body)

    # ========================================================================
    # STARTUP PROBE
    # ========================================================================

    @router.get("/health/startup")
    async def startup_probe():
        """
        Kubernetes startup probe.

        200 once startup has finished either way; the liveness probe
        decides what happens to a failed process.
        """
        if probe.phase == StartupPhase.READY:
            return JSONResponse(status_code=200, content=_probe_body(probe, "Started"))
        if probe.phase == StartupPhase.FAILED:
            return JSONResponse(status_code=200, content=_probe_body(probe, "Failed"))
        return JSONResponse(status_code=503, content=_probe_body(probe, "Starting"))

    # ========================================================================
    # FULL PROBE STATE
    # ========================================================================

    @router.get("/health/probe")
    async def probe_state():
        """Full probe state, same shape as the diagnostics file."""
        state = probe.get_state()
        if state.is_ready:
            http_code = 200
        elif not state.is_alive:
            http_code = 500
        else:
            http_code = 503
        return JSONResponse(
            status_code=http_code,
            content=state.model_dump(mode="json", by_alias=True),
        )

    # ========================================================================
    # SDK INFO
    # ========================================================================

    @router.get("/health/sdk")
    async def sdk_info():
        """Library identity, for support and dashboards."""
        return JSONResponse(
            status_code=200,
            content={
                "name": PACKAGE_NAME,
                "version": __version__,
                "buildDate": BUILD_DATE,
                "features": list(FEATURES),
                "python": platform.python_version(),
                "phase": probe.phase.value,
                "isReady": probe.is_ready,
            },
            headers={SDK_HEADER: f"{PACKAGE_NAME}/{__version__}"},
        )

    # ========================================================================
    # DEPENDENT SERVICES
    # ========================================================================

    @router.get("/health/services")
    async def services_health():
        """
        Check the configured service endpoints.

        Returns:
            200: All services healthy
            206: Some services degraded
            503: A service is unhealthy, or nothing was checked
        """
        async with make_engine() as engine:
            result = await engine.check_all()

        http_code = _status_to_http_code(result.overall_status)
        if http_code != 200:
            logger.warning(
                f"Service healthcheck {result.overall_status.value}: "
                f"{result.unhealthy_count} unhealthy, {result.degraded_count} degraded"
            )

        response_body = result.to_dict()
        response_body["version"] = __version__
        return JSONResponse(status_code=http_code, content=response_body)

    return router


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SDK_HEADER",
    "create_health_router",
]
